# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""LLM adapter facade.

Story services only see the ``CompletionBackend`` protocol: an optional
system instruction plus ``{role, content}`` messages in, text out. The HTTP
details live in:
- llm_request_helpers: headers, bodies, URL checks
- llm_stream_ops: streaming and non-streaming calls
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Mapping, Protocol

from storyloom.core.config import LlmSettings, resolve_llm_settings
from storyloom.services.exceptions import ConfigurationError
from storyloom.services.llm import llm_logging as _llm_logging
from storyloom.services.llm import llm_stream_ops as _llm_stream_ops
from storyloom.services.llm.llm_request_helpers import build_messages

ErrorChunk = _llm_stream_ops.ErrorChunk
ERROR_PREFIX = _llm_stream_ops.ERROR_PREFIX

# Re-exported for the debug endpoint.
llm_logs = _llm_logging.llm_logs


def is_error_chunk(chunk: str) -> bool:
    return isinstance(chunk, ErrorChunk)


class CompletionBackend(Protocol):
    """What the story services need from a language model."""

    def stream(
        self, system_message: str | None, messages: list[dict]
    ) -> AsyncIterator[str]: ...

    async def complete(
        self, system_message: str | None, messages: list[dict]
    ) -> str: ...


class CompletionClient:
    """OpenAI-compatible chat completion client bound to one model."""

    def __init__(self, settings: LlmSettings):
        self.settings = settings

    @classmethod
    def from_config(cls, machine: Mapping[str, Any]) -> "CompletionClient":
        settings = resolve_llm_settings(machine)
        if settings is None:
            raise ConfigurationError(
                "No completion model configured. Set openai.base_url and "
                "openai.model in machine.json or OPENAI_BASE_URL/OPENAI_MODEL."
            )
        return cls(settings)

    async def stream(
        self, system_message: str | None, messages: list[dict]
    ) -> AsyncIterator[str]:
        async for chunk in _llm_stream_ops.stream_chat_text(
            settings=self.settings,
            messages=build_messages(system_message, messages),
        ):
            yield chunk

    async def complete(self, system_message: str | None, messages: list[dict]) -> str:
        return await _llm_stream_ops.complete_chat_text(
            settings=self.settings,
            messages=build_messages(system_message, messages),
        )
