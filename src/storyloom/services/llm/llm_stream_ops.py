# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""HTTP calls against an OpenAI-compatible ``/chat/completions`` endpoint.

Both calls follow the completion contract used by the story services: they
never raise past their boundary. A failure comes back as a single
``ErrorChunk``, a ``str`` that starts with ``Error:``.
"""

from __future__ import annotations

import json as _json
from typing import Any, AsyncIterator, Dict

import httpx

from storyloom.core.config import LlmSettings
from storyloom.services.llm.llm_logging import create_log_entry, finish_log_entry
from storyloom.services.llm.llm_request_helpers import (
    build_body,
    build_headers,
    build_timeout,
    chat_completions_url,
    validate_base_url,
)
from storyloom.utils.stream_helpers import ChannelFilter, final_text

ERROR_PREFIX = "Error:"


class ErrorChunk(str):
    """A text chunk that reports a failed completion instead of prose."""

    @classmethod
    def from_message(cls, message: str) -> "ErrorChunk":
        message = message.strip()
        if not message.startswith(ERROR_PREFIX):
            message = f"{ERROR_PREFIX} {message}"
        return cls(message)


def _describe_upstream_error(status_code: int, raw: bytes) -> str:
    text = raw.decode("utf-8", errors="ignore")
    try:
        data = _json.loads(text)
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                text = str(err["message"])
            elif isinstance(err, str):
                text = err
    except ValueError:
        pass
    return f"Upstream returned HTTP {status_code}: {text[:500]}".rstrip(": ")


def _message_content(response_data: Dict[str, Any]) -> str:
    choices = response_data.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


async def stream_chat_text(
    *, settings: LlmSettings, messages: list[dict]
) -> AsyncIterator[str]:
    """Yield the final-channel text deltas of a streamed chat completion in order."""
    url = chat_completions_url(settings.base_url)
    headers = build_headers(settings.api_key)
    body = build_body(settings, messages, stream=True)
    log_entry = create_log_entry(url, "POST", headers, body, streaming=True)
    channel_filter = ChannelFilter()

    try:
        validate_base_url(settings.base_url)
        async with httpx.AsyncClient(timeout=build_timeout(settings.timeout_s)) as client:
            async with client.stream("POST", url, headers=headers, json=body) as resp:
                log_entry["response"]["status_code"] = resp.status_code

                if resp.status_code >= 400:
                    detail = _describe_upstream_error(resp.status_code, await resp.aread())
                    finish_log_entry(log_entry, error=detail)
                    yield ErrorChunk.from_message(detail)
                    return

                content_type = resp.headers.get("content-type", "")
                if "text/event-stream" not in content_type:
                    # Some servers ignore "stream": true and answer in one piece.
                    response_data = _json.loads(await resp.aread())
                    log_entry["response"]["body"] = response_data
                    text = final_text(
                        channel_filter.feed(_message_content(response_data))
                        + channel_filter.flush()
                    )
                    finish_log_entry(log_entry)
                    if text:
                        yield text
                    return

                async for line in resp.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data_str = line[6:].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        chunk = _json.loads(data_str)
                    except ValueError:
                        continue

                    choices = chunk.get("choices") or []
                    if not choices:
                        continue
                    content = (choices[0].get("delta") or {}).get("content")
                    if not content:
                        continue

                    log_entry["response"]["chunks"] += 1
                    log_entry["response"]["full_content"] += content
                    text = final_text(channel_filter.feed(content))
                    if text:
                        yield text

                text = final_text(channel_filter.flush())
                if text:
                    yield text
                finish_log_entry(log_entry)
    except Exception as e:
        detail = f"Failed to get response from the completion service: {e}"
        finish_log_entry(log_entry, error=detail)
        yield ErrorChunk.from_message(detail)


async def complete_chat_text(*, settings: LlmSettings, messages: list[dict]) -> str:
    """Run a non-streaming chat completion and return its final text."""
    url = chat_completions_url(settings.base_url)
    headers = build_headers(settings.api_key)
    body = build_body(settings, messages, stream=False)
    log_entry = create_log_entry(url, "POST", headers, body)

    try:
        validate_base_url(settings.base_url)
        async with httpx.AsyncClient(timeout=build_timeout(settings.timeout_s)) as client:
            r = await client.post(url, headers=headers, json=body)
            log_entry["response"]["status_code"] = r.status_code
            if r.status_code >= 400:
                detail = _describe_upstream_error(r.status_code, r.content)
                finish_log_entry(log_entry, error=detail)
                return ErrorChunk.from_message(detail)
            response_data = r.json()
    except Exception as e:
        detail = f"Failed to get response from the completion service: {e}"
        finish_log_entry(log_entry, error=detail)
        return ErrorChunk.from_message(detail)

    log_entry["response"]["body"] = response_data
    finish_log_entry(log_entry)
    channel_filter = ChannelFilter()
    return final_text(
        channel_filter.feed(_message_content(response_data)) + channel_filter.flush()
    )
