"""Utilities for loading the coach prompt templates, one JSON file per operation."""
from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Mapping

_PROMPT_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class CoachPrompt:
    """System and user templates for a single coaching operation."""

    id: str
    operation: str
    prompt_version: str
    description: str
    system_template: str
    user_template: str
    max_tokens: int | None = None

    def render(self, **fields: object) -> list[dict[str, str]]:
        """Return chat messages with ``fields`` substituted into both templates."""

        return [
            {"role": "system", "content": self.system_template.format(**fields).strip()},
            {"role": "user", "content": self.user_template.format(**fields).strip()},
        ]


def _load_prompt(path: Path) -> CoachPrompt:
    payload = json.loads(path.read_text(encoding="utf-8"))
    required = {
        "id",
        "operation",
        "prompt_version",
        "description",
        "system_template",
        "user_template",
    }
    missing = sorted(required - payload.keys())
    if missing:
        raise ValueError(f"Prompt file {path.name} missing keys: {', '.join(missing)}")
    max_tokens = payload.get("max_tokens")
    return CoachPrompt(
        id=str(payload["id"]),
        operation=str(payload["operation"]),
        prompt_version=str(payload["prompt_version"]),
        description=str(payload["description"]),
        system_template=str(payload["system_template"]),
        user_template=str(payload["user_template"]),
        max_tokens=int(max_tokens) if max_tokens is not None else None,
    )


def _iter_prompt_files(directory: Path) -> Iterable[Path]:
    for path in sorted(directory.glob("*.json")):
        if path.is_file():
            yield path


@lru_cache(maxsize=1)
def load_prompts(directory: Path | None = None) -> Mapping[str, CoachPrompt]:
    base_dir = Path(directory) if directory else _PROMPT_DIR
    prompts: Dict[str, CoachPrompt] = {}
    for file_path in _iter_prompt_files(base_dir):
        prompt = _load_prompt(file_path)
        key = prompt.operation.lower()
        if key in prompts:
            raise ValueError(f"Duplicate prompt for operation detected: {prompt.operation}")
        prompts[key] = prompt
    if not prompts:
        raise RuntimeError(f"No coach prompt definitions found in {base_dir}")
    return prompts


def get_prompt(operation: str) -> CoachPrompt:
    prompts = load_prompts()
    key = str(operation).lower()
    if key not in prompts:
        raise KeyError(f"Unknown coach prompt '{operation}'. Available: {', '.join(sorted(prompts))}")
    return prompts[key]


__all__ = ["CoachPrompt", "load_prompts", "get_prompt"]
