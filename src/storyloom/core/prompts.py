# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Default prompts for narration, summarization and chapter wrap-up.

Defaults ship in ``prompts_defaults.json``; a ``prompts.json`` in the config
directory overlays them. The result is a ``PromptDefaults`` value that is
passed to the story services, and templates fall back to it field by field.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from storyloom.models.templates import PromptConfig, Template
from storyloom.services.exceptions import ConfigurationError

DEFAULTS_JSON_PATH = Path(__file__).resolve().parent / "prompts_defaults.json"


def ensure_string(v: Any) -> str:
    if isinstance(v, list):
        return "\n".join(str(item) for item in v)
    return str(v) if v is not None else ""


def _is_blank(value: str | None) -> bool:
    return not value or not value.strip()


@dataclass(frozen=True)
class PromptDefaults:
    """System-wide prompt fallbacks plus the fixed system messages."""

    prompt: PromptConfig
    system_messages: Dict[str, str] = field(default_factory=dict)

    def system_message(self, message_type: str, **kwargs: Any) -> str:
        template = self.system_messages.get(message_type, "")
        try:
            return template.format(**kwargs)
        except KeyError as e:
            raise ConfigurationError(
                f"Missing required parameter for system message {message_type}: {e}"
            ) from e
        except (IndexError, ValueError) as e:
            raise ConfigurationError(
                f"System message {message_type} is not a valid template: {e}"
            ) from e


def _read_prompt_file(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return raw if isinstance(raw, dict) else {}


def _overlay(target: Dict[str, Dict[str, str]], raw: Dict[str, Any]) -> None:
    for section in ("prompt", "system_messages"):
        values = raw.get(section)
        if not isinstance(values, dict):
            continue
        for k, v in values.items():
            if v is None:
                continue
            target[section][k] = ensure_string(v)


def load_prompt_defaults(user_prompts_path: Optional[Path] = None) -> PromptDefaults:
    """Load the bundled defaults and overlay the user's prompts.json if present.

    Raises ValueError when either file holds malformed JSON.
    """
    merged: Dict[str, Dict[str, str]] = {"prompt": {}, "system_messages": {}}
    for path in (DEFAULTS_JSON_PATH, user_prompts_path):
        if path is None or not path.exists():
            continue
        try:
            _overlay(merged, _read_prompt_file(path))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid prompt file at {path}: {e}") from e

    fields = PromptConfig.model_fields.keys()
    prompt = PromptConfig(**{k: v for k, v in merged["prompt"].items() if k in fields})
    return PromptDefaults(prompt=prompt, system_messages=merged["system_messages"])


def save_prompt_overrides(path: Path, prompt: PromptConfig) -> None:
    """Persist user-level default prompt values (the settings page)."""
    existing: Dict[str, Any] = {}
    if path.exists():
        existing = _read_prompt_file(path)
    existing["prompt"] = {
        k: v for k, v in prompt.model_dump().items() if not _is_blank(v)
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(existing, f, indent=2, ensure_ascii=False)


def merge_prompt_with_defaults(
    prompt: PromptConfig, defaults: PromptConfig
) -> PromptConfig:
    """Fill every blank prompt field from the defaults."""
    values: Dict[str, str | None] = {}
    for name, default_value in defaults.model_dump().items():
        own = getattr(prompt, name)
        values[name] = default_value if _is_blank(own) else own
    return PromptConfig(**values)


def merged_template(template: Template, defaults: PromptDefaults) -> Template:
    return template.model_copy(
        update={"prompt": merge_prompt_with_defaults(template.prompt, defaults.prompt)}
    )
