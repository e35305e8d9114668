# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Request building blocks shared by the streaming and non-streaming calls."""

from __future__ import annotations

from typing import Any, Dict

import httpx

from storyloom.core.config import DEFAULT_TIMEOUT_S, LlmSettings


def build_headers(api_key: str | None) -> Dict[str, str]:
    headers: Dict[str, str] = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def build_timeout(timeout_s: int) -> httpx.Timeout:
    try:
        return httpx.Timeout(float(timeout_s or DEFAULT_TIMEOUT_S))
    except (TypeError, ValueError):
        return httpx.Timeout(float(DEFAULT_TIMEOUT_S))


def build_messages(system_message: str | None, messages: list[dict]) -> list[dict]:
    """Prepend the optional system instruction to the conversation."""
    prefix = [{"role": "system", "content": system_message}] if system_message else []
    return prefix + [
        {"role": m["role"], "content": m["content"]} for m in messages
    ]


def build_body(
    settings: LlmSettings, messages: list[dict], *, stream: bool
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": settings.model_id,
        "messages": messages,
        "temperature": settings.temperature,
        "stream": stream,
    }
    if isinstance(settings.max_tokens, int):
        body["max_tokens"] = settings.max_tokens
    return body


def chat_completions_url(base_url: str) -> str:
    return str(base_url).rstrip("/") + "/chat/completions"


def validate_base_url(base_url: str) -> None:
    """Reject URLs that are not plain http(s) endpoints."""
    if not (base_url.startswith("http://") or base_url.startswith("https://")):
        raise ValueError(f"Invalid base_url scheme: {base_url}")
    if any(c in base_url for c in "@[]"):
        raise ValueError(f"Potentially dangerous base_url: {base_url}")
