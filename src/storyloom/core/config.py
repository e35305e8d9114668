# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Configuration loading utilities for StoryLoom.

Conventions:
- Machine-specific config: resources/config/machine.json
- Default prompt overrides: resources/config/prompts.json
- Environment variables override JSON values.
- JSON values can reference environment variables using ${VAR_NAME} placeholders.

The resolved values are collected once into an ``AppConfig`` that the app
factory hands to the services; nothing reads credentials from module state.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
RESOURCES_DIR = BASE_DIR / "resources"
CONFIG_DIR = RESOURCES_DIR / "config"
SCHEMAS_DIR = RESOURCES_DIR / "schemas"
DATA_DIR = BASE_DIR / "data"
BOOKS_ROOT = DATA_DIR / "books"
TEMPLATES_ROOT = DATA_DIR / "templates"

DEFAULT_TIMEOUT_S = 60
DEFAULT_MAX_STREAM_S = 600

CURRENT_SCHEMA_VERSION = 1

_ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _interpolate_env(value: Any) -> Any:
    """Interpolate ${VAR} placeholders within strings using environment variables.

    Non-string types are returned unchanged.
    """
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, match.group(0))  # leave placeholder if unset

        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(v) for v in value]
    return value


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deeply merge mapping 'override' into dict 'base'. Returns new dict.

    - For dict values, merges recursively.
    - For lists and scalars, override replaces base.
    """
    result: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(result.get(k), Mapping):
            result[k] = _deep_merge(dict(result[k]), v)  # type: ignore[index]
        else:
            result[k] = v
    return result


def load_json_file(path: os.PathLike[str] | str | None) -> Dict[str, Any]:
    """Load JSON from path if it exists; return empty dict if missing.

    Raises ValueError for malformed JSON.
    """
    if path is None:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON at {p}: {e}") from e


def _env_overrides_for_openai() -> Dict[str, Any]:
    """Collect OPENAI_* environment variables into a nested dict structure.

    Supported variables:
    - OPENAI_API_KEY -> openai.api_key
    - OPENAI_BASE_URL -> openai.base_url
    - OPENAI_MODEL -> openai.model
    - OPENAI_TIMEOUT_S -> openai.timeout_s (int if parseable)
    """
    openai: Dict[str, Any] = {}
    for env_name, key in (
        ("OPENAI_API_KEY", "api_key"),
        ("OPENAI_BASE_URL", "base_url"),
        ("OPENAI_MODEL", "model"),
    ):
        value = os.getenv(env_name)
        if value is not None:
            openai[key] = value

    timeout_s = os.getenv("OPENAI_TIMEOUT_S")
    if timeout_s is not None:
        try:
            openai["timeout_s"] = int(timeout_s)
        except ValueError:
            openai["timeout_s"] = timeout_s
    return {"openai": openai} if openai else {}


def load_machine_config(
    path: os.PathLike[str] | str | None = CONFIG_DIR / "machine.json",
    defaults: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Load machine configuration applying precedence and interpolation.

    Precedence: env overrides > JSON file > defaults
    """
    defaults = dict(defaults or {})
    json_config = load_json_file(path)
    json_config = _interpolate_env(json_config)
    merged = _deep_merge(defaults, json_config)
    env_openai = _env_overrides_for_openai()
    merged = _deep_merge(merged, env_openai)
    models = merged.get("openai", {}).get("models")
    if env_openai and isinstance(models, list):
        # Env values win over the per-model entries as well.
        merged["openai"]["models"] = [
            {**m, **env_openai["openai"]} if isinstance(m, dict) else m
            for m in models
        ]
    return merged


def load_schema(kind: str, version: int = CURRENT_SCHEMA_VERSION) -> Dict[str, Any]:
    """Get the JSON schema for a stored document kind ("book", "template")."""
    schema_path = SCHEMAS_DIR / f"{kind}-v{version}.schema.json"
    with open(schema_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _as_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


@dataclass(frozen=True)
class LlmSettings:
    """Resolved connection settings for the completion endpoint."""

    base_url: str
    api_key: str | None
    model_id: str
    timeout_s: int = DEFAULT_TIMEOUT_S
    temperature: float = 0.7
    max_tokens: int | None = None
    max_stream_s: int = DEFAULT_MAX_STREAM_S


def resolve_llm_settings(machine: Mapping[str, Any]) -> LlmSettings | None:
    """Pick the active model from ``machine["openai"]``.

    Accepts either a flat ``openai`` block or ``openai.models[]`` with an
    ``openai.selected`` name. Flat keys act as fallbacks for the chosen entry.
    Returns None when no base_url/model is configured.
    """
    openai_cfg: Dict[str, Any] = dict(machine.get("openai") or {})
    chosen: Dict[str, Any] = {}
    models = openai_cfg.get("models")
    if isinstance(models, list) and models:
        selected = openai_cfg.get("selected")
        chosen = next(
            (m for m in models if isinstance(m, dict) and m.get("name") == selected),
            models[0] if isinstance(models[0], dict) else {},
        )

    def pick(key: str, default: Any = None) -> Any:
        value = chosen.get(key)
        return value if value not in (None, "") else openai_cfg.get(key, default)

    base_url = pick("base_url")
    model_id = pick("model")
    if not base_url or not model_id:
        return None

    max_tokens = pick("max_tokens")
    try:
        temperature = float(pick("temperature", 0.7))
    except (TypeError, ValueError):
        temperature = 0.7
    return LlmSettings(
        base_url=str(base_url),
        api_key=str(pick("api_key")) if pick("api_key") else None,
        model_id=str(model_id),
        timeout_s=_as_int(pick("timeout_s"), DEFAULT_TIMEOUT_S),
        temperature=temperature,
        max_tokens=max_tokens if isinstance(max_tokens, int) else None,
        max_stream_s=_as_int(pick("max_stream_s"), DEFAULT_MAX_STREAM_S),
    )


@dataclass
class AppConfig:
    """Everything the app factory wires into the services."""

    books_root: Path = BOOKS_ROOT
    templates_root: Path = TEMPLATES_ROOT
    config_dir: Path = CONFIG_DIR
    machine: Dict[str, Any] = field(default_factory=dict)

    @property
    def llm(self) -> LlmSettings | None:
        return resolve_llm_settings(self.machine)

    @property
    def prompts_path(self) -> Path:
        return self.config_dir / "prompts.json"


def load_app_config() -> AppConfig:
    """Build the app configuration from environment and machine.json."""
    config_dir = Path(os.getenv("STORYLOOM_CONFIG_DIR", str(CONFIG_DIR)))
    return AppConfig(
        books_root=Path(os.getenv("STORYLOOM_BOOKS_ROOT", str(BOOKS_ROOT))),
        templates_root=Path(
            os.getenv("STORYLOOM_TEMPLATES_ROOT", str(TEMPLATES_ROOT))
        ),
        config_dir=config_dir,
        machine=load_machine_config(config_dir / "machine.json"),
    )
