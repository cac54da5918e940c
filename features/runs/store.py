"""
Filesystem backing store for a single run.

Layout under <DESIGN_RUN_DIR>/.design-agent/runs/<runId>/:
  state.json            — RunState
  input.json            — RunInput
  artifacts/            — per-stage JSON, raw outputs, trace.jsonl, synth/
  published/DESIGN.md   — the final document

Every relative key is checked before use: empty keys, absolute paths, `..`
segments and anything resolving outside the run directory are rejected.
"""

from __future__ import annotations

import fnmatch
import json
import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

import config
from features.runs.models import RunInput, RunState
from utils.errors import RunNotFound

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# ── Well-known keys ───────────────────────────────────────────────────

STATE = "state.json"
INPUT = "input.json"
TRACE = "artifacts/trace.jsonl"
CLARIFIER = "artifacts/clarifier.json"
CLARIFIED_SPEC = "artifacts/clarifiedSpec.json"
PROPOSED_DESIGN = "artifacts/proposedDesign.json"
CRITIQUE = "artifacts/critique.json"
CRITIQUE_JUDGE = "artifacts/critique.judge.json"
OPTIMIZED_DESIGN = "artifacts/optimizedDesign.json"
PUBLISHED_PACKAGE = "artifacts/publishedPackage.json"
DESIGN_DOC = "published/DESIGN.md"
OPTIONS = "artifacts/options.json"
ANSWERS = "artifacts/answers.json"
SYNTH_SELECTION = "artifacts/synth/selection.json"
SYNTH_QUESTIONS = "artifacts/synth/questions.json"
SYNTH_ANSWERS = "artifacts/synth/answers.json"
SYNTH_ASSUMPTIONS = "artifacts/synth/assumptions.json"
SYNTH_MERGED = "artifacts/synth/mergedPartial.json"
SYNTH_CONSISTENCY = "artifacts/synth/consistencyReport.json"


def raw_output_key(agent_name: str) -> str:
    return f"artifacts/{agent_name}.raw.txt"


def specialist_key(specialist: str) -> str:
    return f"artifacts/synth/specialists/{specialist}.json"


def run_dir(base_dir: str | Path, run_id: str) -> Path:
    """Return {base_dir}/.design-agent/runs/{run_id}."""
    base = Path(base_dir) if str(base_dir).strip() else Path(".")
    return base / f".{config.AGENT_NAME}" / "runs" / run_id


def runs_root(base_dir: str | Path) -> Path:
    return Path(base_dir) / f".{config.AGENT_NAME}" / "runs"


class RunStore:
    """Keyed read/write access to one run's directory."""

    def __init__(self, run_path: str | Path):
        self.path = Path(run_path)

    def exists(self) -> bool:
        return self.path.is_dir()

    def ensure_dirs(self) -> None:
        (self.path / "artifacts").mkdir(parents=True, exist_ok=True)
        (self.path / "published").mkdir(parents=True, exist_ok=True)

    def resolve(self, relative: str) -> Path:
        if not relative or not relative.strip():
            raise ValueError("Relative path cannot be empty.")
        normalized = relative.replace("\\", "/")
        if normalized.startswith("/") or Path(relative).is_absolute():
            raise ValueError("Absolute paths are not allowed.")
        if ".." in normalized:
            raise ValueError("Path traversal (..) is not allowed.")
        full = (self.path / normalized).resolve()
        root = self.path.resolve()
        if full != root and root not in full.parents:
            raise ValueError("Path escapes run directory.")
        return full

    # ── Raw access ────────────────────────────────────────────────────

    def write_text(self, key: str, content: str) -> None:
        path = self.resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def read_text(self, key: str) -> str:
        return self.resolve(key).read_text(encoding="utf-8")

    def read_bytes(self, key: str) -> bytes:
        return self.resolve(key).read_bytes()

    def has(self, key: str) -> bool:
        return self.resolve(key).is_file()

    def write_json(self, key: str, data: Any) -> None:
        self.write_text(key, json.dumps(data, indent=2, default=str))

    def read_json(self, key: str) -> Any:
        return json.loads(self.read_text(key))

    def append_line(self, key: str, line: str) -> None:
        path = self.resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")

    def list(self, pattern: str) -> list[str]:
        """
        Relative paths of files matching `pattern` (e.g. "artifacts/*.json").

        `*` stays within one directory level; a pattern containing `**`
        matches at any depth ("artifacts/**.json").
        """
        if not pattern or not pattern.strip():
            raise ValueError("Glob pattern cannot be empty.")
        if ".." in pattern.replace("\\", "/"):
            raise ValueError("Path traversal (..) is not allowed in glob.")
        if not self.path.is_dir():
            return []
        root = self.path.resolve()
        matches = []
        for full in sorted(root.rglob("*")):
            if not full.is_file():
                continue
            relative = full.relative_to(root).as_posix()
            if fnmatch.fnmatchcase(relative, pattern) and ("**" in pattern or relative.count("/") == pattern.count("/")):
                matches.append(relative)
        return matches

    # ── Typed helpers ─────────────────────────────────────────────────

    def save_state(self, state: RunState) -> None:
        self.write_json(STATE, state.to_dict())

    def load_state(self) -> RunState:
        try:
            return RunState.from_dict(self.read_json(STATE))
        except FileNotFoundError as e:
            raise RunNotFound(self.path.name) from e
        except (ValueError, KeyError) as e:
            log.warning("Unreadable state for run %s: %s", self.path.name, e)
            raise RunNotFound(self.path.name) from e

    def save_input(self, run_input: RunInput) -> None:
        self.write_json(INPUT, run_input.to_dict())

    def load_input(self) -> RunInput:
        return RunInput.from_dict(self.read_json(INPUT))

    def save_model(self, key: str, value: BaseModel | list[BaseModel]) -> None:
        if isinstance(value, list):
            self.write_json(key, [v.model_dump(mode="json") for v in value])
        else:
            self.write_json(key, value.model_dump(mode="json"))

    def load_model(self, key: str, model: type[M]) -> M | None:
        if not self.has(key):
            return None
        return model.model_validate(self.read_json(key))

    def load_model_list(self, key: str, model: type[M]) -> list[M] | None:
        if not self.has(key):
            return None
        return [model.model_validate(item) for item in self.read_json(key)]
