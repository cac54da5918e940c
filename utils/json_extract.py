"""
Tolerant JSON parsing for model output.

Models wrap JSON in markdown fences, leave trailing commas and vary key
casing. These helpers absorb that noise; anything still unparseable yields
None so the stage runner can decide whether to retry.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, ValidationError

log = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*\r?\n?([\s\S]*?)\r?\n?```\s*$", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def extract_json(text: str) -> str:
    """Return the JSON body of `text`, unwrapping a ```json fence if present."""
    if not text or not text.strip():
        return text
    trimmed = text.strip()
    match = _FENCE_RE.match(trimmed)
    if match:
        return match.group(1).strip()
    return trimmed


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


def loads_tolerant(text: str) -> Any | None:
    """Parse JSON, allowing a code fence and trailing commas. None on failure."""
    body = extract_json(text or "")
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_TRAILING_COMMA_RE.sub(r"\1", body))
    except json.JSONDecodeError:
        return None


def try_parse(model: type[T], text: str) -> T | None:
    """Parse `text` into `model`; None when the text is not a matching JSON object."""
    data = loads_tolerant(text)
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(_lower_keys(data))
    except ValidationError as e:
        log.debug("Output did not match %s: %d errors", model.__name__, e.error_count())
        return None


def parser_for(model: type[T]) -> Callable[[str], T | None]:
    return lambda text: try_parse(model, text)
