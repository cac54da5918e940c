"""
OpenAI LLM helpers — the generation capability used by every stage.

The pipeline only ever sees `Generator.generate(instructions, prompt)`.
Anything the OpenAI SDK raises is translated to GenerationUnavailable here,
so the stage runner can tell transport failures apart from bad output.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Protocol

from openai import OpenAI, OpenAIError, RateLimitError

import config
from utils.errors import GenerationUnavailable

log = logging.getLogger(__name__)

_client: OpenAI | None = None


def get_client() -> OpenAI:
    global _client
    if _client is None:
        if not config.OPENAI_API_KEY:
            raise GenerationUnavailable("OPENAI_API_KEY is not set")
        _client = OpenAI(api_key=config.OPENAI_API_KEY)
    return _client


BASE_DELAY = 10  # seconds


def chat(
    system: str,
    user: str,
    model: str | None = None,
    json_mode: bool = False,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """Send a chat completion request and return the assistant message.

    Rate limit (429) errors are retried OPENAI_RATE_LIMIT_RETRIES times with
    exponential backoff; every other SDK error is raised immediately as
    GenerationUnavailable.
    """
    client = get_client()
    kwargs: dict = {
        "model": model or config.OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": config.OPENAI_TEMPERATURE if temperature is None else temperature,
        "max_tokens": max_tokens or config.OPENAI_MAX_TOKENS,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    attempts = config.OPENAI_RATE_LIMIT_RETRIES + 1
    for attempt in range(attempts):
        try:
            resp = client.chat.completions.create(**kwargs)
            return resp.choices[0].message.content or ""
        except RateLimitError as e:
            if attempt == attempts - 1:
                raise GenerationUnavailable(f"Model call rate limited: {e}") from e
            delay = BASE_DELAY * (2 ** attempt)
            log.warning(
                "Rate limited (attempt %d/%d), retrying in %ds",
                attempt + 1, attempts, delay,
            )
            time.sleep(delay)
        except OpenAIError as e:
            raise GenerationUnavailable(f"Model call failed: {e}") from e

    raise GenerationUnavailable("Model call failed: no attempts made")


class Generator(Protocol):
    async def generate(self, instructions: str, prompt: str) -> str: ...


class OpenAIGenerator:
    """Async adapter over `chat`; the blocking SDK call runs in the default executor."""

    def __init__(self, model: str | None = None):
        self.model = model

    async def generate(self, instructions: str, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        call = functools.partial(chat, instructions, prompt, model=self.model, json_mode=True)
        return await loop.run_in_executor(None, call)
