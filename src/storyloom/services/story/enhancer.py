# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Rewrite a single segment following a free-text instruction."""

from __future__ import annotations

from typing import AsyncIterator

from storyloom.core.prompts import PromptDefaults
from storyloom.services.exceptions import StoryValidationError
from storyloom.services.llm.llm import CompletionBackend
from storyloom.services.story.context_assembler import (
    DEFAULT_DIVIDER,
    assemble_story_so_far,
)
from storyloom.services.story.segment_store import SegmentStore

PROMPT_LABEL = "PROMPT:"


def build_enhance_messages(
    store: SegmentStore,
    segment_id: str,
    instruction: str,
    prompts: PromptDefaults,
    *,
    include_prev_story: bool = True,
) -> tuple[str, list[dict]]:
    if not instruction or not instruction.strip():
        raise StoryValidationError("Instruction cannot be empty")
    segment = store.get(segment_id)

    content = ""
    if include_prev_story:
        prev_story = assemble_story_so_far(
            store.segments, store.summaries, until_segment_id=segment_id
        )
        if prev_story:
            content += prev_story + DEFAULT_DIVIDER
    content += segment.content + DEFAULT_DIVIDER + f"{PROMPT_LABEL}\n\n" + instruction

    return prompts.system_message("enhancer"), [{"role": "user", "content": content}]


def stream_enhancement(
    client: CompletionBackend,
    store: SegmentStore,
    segment_id: str,
    instruction: str,
    prompts: PromptDefaults,
    *,
    include_prev_story: bool = True,
) -> AsyncIterator[str]:
    """Validate now and return the stream of rewritten text.

    The caller commits the result with ``SegmentStore.replace_content``.
    """
    system_message, messages = build_enhance_messages(
        store,
        segment_id,
        instruction,
        prompts,
        include_prev_story=include_prev_story,
    )
    return client.stream(system_message, messages)
