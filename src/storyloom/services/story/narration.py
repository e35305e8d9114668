# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""One user-turn / assistant-turn exchange.

The cycle walks ``idle -> awaiting_user_input -> context_assembled ->
streaming -> finalized | failed``. ``begin`` (or ``begin_redo``) assembles
the prompt and appends the user segment plus an empty assistant placeholder;
``stream`` consumes the completion and appends every chunk to the placeholder
in receipt order.

The prompt is two user messages. Block 1 carries the story background, the
previous chapters and the story so far; Block 2 carries the narrator
instruction and the reader's input under the input tag.

A failed stream keeps the partial prose, appends the error text inline and
marks the segment ``incomplete``; redo recovers from there. A cancelled
consumer leaves ``dirty`` unset so the caller persists nothing.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Literal

from storyloom.core.config import DEFAULT_MAX_STREAM_S
from storyloom.core.prompts import PromptDefaults, merged_template
from storyloom.models.books import StorySegment
from storyloom.models.templates import Template
from storyloom.services.debug.debug_logging import add_debug_log, append_debug_log
from storyloom.services.exceptions import StoryValidationError
from storyloom.services.llm.llm import ERROR_PREFIX, CompletionBackend, is_error_chunk
from storyloom.services.story.context_assembler import (
    DEFAULT_DIVIDER,
    assemble_story_so_far,
    format_previous_chapters,
)
from storyloom.services.story.segment_store import SegmentStore, new_segment_id
from storyloom.utils.llm_parsing import cleanup_llm_response

NarrationStatus = Literal[
    "idle",
    "awaiting_user_input",
    "context_assembled",
    "streaming",
    "finalized",
    "failed",
]

IDLE: NarrationStatus = "idle"
AWAITING_USER_INPUT: NarrationStatus = "awaiting_user_input"
CONTEXT_ASSEMBLED: NarrationStatus = "context_assembled"
STREAMING: NarrationStatus = "streaming"
FINALIZED: NarrationStatus = "finalized"
FAILED: NarrationStatus = "failed"


def compose_context_block(
    store: SegmentStore, template: Template, *, until_segment_id: str | None = None
) -> str:
    """Block 1: background, closed chapters and story so far; empty sections are left out."""
    sections = []
    if template.story_background.strip():
        sections.append(f"STORY BACKGROUND:\n{template.story_background.strip()}")
    previous = format_previous_chapters(store.chapters)
    if previous:
        sections.append(f"PREVIOUS CHAPTERS:\n{previous}")
    story = assemble_story_so_far(
        store.segments, store.summaries, until_segment_id=until_segment_id
    )
    if story:
        sections.append(f"STORY SO FAR:\n{story}")
    return DEFAULT_DIVIDER.join(sections)


def compose_instruction_block(template: Template, user_input: str) -> str:
    """Block 2: narrator instruction, a blank line, then the tagged user input."""
    narrator = (template.prompt.narrator or "").strip()
    input_tag = (template.prompt.input_tag or "").strip()
    tagged_input = f"{input_tag}\n{user_input}" if input_tag else user_input
    return DEFAULT_DIVIDER.join(part for part in (narrator, tagged_input) if part)


def build_narration_messages(
    store: SegmentStore,
    template: Template,
    user_input: str,
    *,
    until_segment_id: str | None = None,
) -> list[dict]:
    messages = []
    context = compose_context_block(store, template, until_segment_id=until_segment_id)
    if context:
        messages.append({"role": "user", "content": context})
    messages.append(
        {"role": "user", "content": compose_instruction_block(template, user_input)}
    )
    return messages


class NarrationCycle:
    """Drives one narration exchange against a store snapshot.

    ``store`` always holds the latest snapshot; the caller persists it when
    ``dirty`` is set after the stream is drained.
    """

    def __init__(
        self,
        store: SegmentStore,
        template: Template,
        prompts: PromptDefaults,
        client: CompletionBackend,
        *,
        id_factory: Callable[[], str] = new_segment_id,
        max_stream_s: float = DEFAULT_MAX_STREAM_S,
    ):
        self.store = store
        self.template = merged_template(template, prompts)
        self.client = client
        self.id_factory = id_factory
        self.max_stream_s = max_stream_s

        self.status: NarrationStatus = IDLE
        self.messages: list[dict] = []
        self.user_input: str | None = None
        self.user_segment_id: str | None = None
        self.assistant_segment_id: str | None = None
        self.error: str | None = None
        self.dirty = False

    @property
    def assistant_segment(self) -> StorySegment | None:
        if self.assistant_segment_id is None:
            return None
        return self.store.get(self.assistant_segment_id)

    def _require_status(self, *allowed: NarrationStatus) -> None:
        if self.status not in allowed:
            raise StoryValidationError(
                f"Narration cannot proceed from status '{self.status}'"
            )

    def _append_exchange(self, user_input: str) -> None:
        self.user_segment_id = self.id_factory()
        self.assistant_segment_id = self.id_factory()
        self.store = self.store.append(
            StorySegment(id=self.user_segment_id, role="user", content=user_input)
        ).append(StorySegment(id=self.assistant_segment_id, role="assistant", content=""))
        self.user_input = user_input
        self.status = CONTEXT_ASSEMBLED

    def begin(self, user_input: str) -> list[dict]:
        """Assemble the prompt for ``user_input`` and append the new exchange."""
        self._require_status(IDLE)
        if not user_input or not user_input.strip():
            raise StoryValidationError("Input cannot be empty")
        self.status = AWAITING_USER_INPUT
        self.messages = build_narration_messages(self.store, self.template, user_input)
        self._append_exchange(user_input)
        return self.messages

    def begin_redo(self) -> list[dict]:
        """Drop the trailing user/assistant exchange and queue it again.

        The context is assembled up to (excluding) the removed user segment,
        which is the same text the original attempt was built from.
        """
        self._require_status(IDLE)
        segments = self.store.segments
        if len(segments) < 2 or segments[-1].role != "assistant":
            raise StoryValidationError("Redo requires the last segment to be a reply")
        reply, user_turn = segments[-1], segments[-2]
        if user_turn.role != "user":
            raise StoryValidationError(
                "Redo requires the last reply to follow a user segment"
            )
        if reply.chapter_id is not None or user_turn.chapter_id is not None:
            raise StoryValidationError("Cannot redo a segment of a closed chapter")
        if reply.segment_summary_id is not None:
            raise StoryValidationError("Cannot redo a summarized segment")

        self.status = AWAITING_USER_INPUT
        self.messages = build_narration_messages(
            self.store,
            self.template,
            user_turn.content,
            until_segment_id=user_turn.id,
        )
        self.store = self.store.remove_many([reply.id, user_turn.id])
        self._append_exchange(user_turn.content)
        return self.messages

    def _fail(self, message: str) -> str:
        if not message.startswith(ERROR_PREFIX):
            message = f"{ERROR_PREFIX} {message}"
        partial = self.assistant_segment.content
        inline = (DEFAULT_DIVIDER if partial else "") + message
        self.store = self.store.replace_content(
            self.assistant_segment_id, partial + inline, incomplete=True
        )
        self.status = FAILED
        self.error = message
        self.dirty = True
        add_debug_log(f"Narration failed: {message}", "error")
        return inline

    async def stream(self) -> AsyncIterator[str]:
        """Stream the reply into the placeholder segment and re-yield each chunk."""
        self._require_status(CONTEXT_ASSEMBLED)
        self.status = STREAMING
        log_id = add_debug_log(f"Narration started: {self.user_input}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_stream_s
        upstream = self.client.stream(None, self.messages)
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                try:
                    chunk = await asyncio.wait_for(upstream.__anext__(), remaining)
                except StopAsyncIteration:
                    break
                if is_error_chunk(chunk):
                    yield self._fail(str(chunk))
                    return
                if not chunk:
                    continue
                self.store = self.store.append_content(self.assistant_segment_id, chunk)
                yield chunk
        except asyncio.TimeoutError:
            yield self._fail(
                f"Generation did not finish within {self.max_stream_s} seconds"
            )
            return
        except asyncio.CancelledError:
            add_debug_log("Narration cancelled by the client", "warning")
            raise
        except Exception as e:
            yield self._fail(f"Generation failed: {e}")
            return
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()

        content = cleanup_llm_response(self.assistant_segment.content)
        self.store = self.store.replace_content(self.assistant_segment_id, content)
        self.status = FINALIZED
        self.dirty = True
        append_debug_log(log_id, f" -> finished with {len(content)} characters")

    async def _drain(self) -> SegmentStore:
        async for _chunk in self.stream():
            pass
        return self.store

    async def run(self, user_input: str) -> SegmentStore:
        self.begin(user_input)
        return await self._drain()

    async def run_redo(self) -> SegmentStore:
        self.begin_redo()
        return await self._drain()
