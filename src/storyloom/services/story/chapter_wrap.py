# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Close the leading unchaptered segments into a chapter.

A chapter needs a title, a prose summary and a structured end-state. The
summary and the end-state are generated by two independent calls that can be
re-run any number of times before commit; all three fields stay editable in
a ``ChapterDraft`` until ``commit_chapter`` writes the chapter record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

from storyloom.models.books import Chapter, StorySegment
from storyloom.models.templates import PromptConfig
from storyloom.services.debug.debug_logging import add_debug_log
from storyloom.services.exceptions import StoryValidationError
from storyloom.services.llm.llm import CompletionBackend, is_error_chunk
from storyloom.services.story.context_assembler import (
    DEFAULT_DIVIDER,
    assemble_story_so_far,
)
from storyloom.services.story.segment_store import SegmentStore, new_segment_id
from storyloom.utils.llm_parsing import cleanup_llm_response

STORY_TO_SUMMARIZE_LABEL = "STORY TO SUMMARIZE:"


@dataclass
class ChapterDraft:
    segment_ids: list[str] = field(default_factory=list)
    title: str = ""
    summary: str = ""
    end_state_text: str = ""
    error: str | None = None


def select_chapter_span(
    store: SegmentStore, through_segment_id: str
) -> list[StorySegment]:
    """Return the unchaptered prefix of the book ending at ``through_segment_id``."""
    target = store.get(through_segment_id)
    if target.chapter_id is not None:
        raise StoryValidationError(f"Segment {through_segment_id} is already chaptered")

    span: list[StorySegment] = []
    for seg in store.unchaptered():
        span.append(seg)
        if seg.id == through_segment_id:
            store.check_chapter_boundary([s.id for s in span])
            return span
    raise StoryValidationError(
        f"Segment {through_segment_id} is not part of the open story"
    )


def start_chapter(store: SegmentStore, through_segment_id: str) -> ChapterDraft:
    span = select_chapter_span(store, through_segment_id)
    return ChapterDraft(segment_ids=[s.id for s in span])


def chapter_preview(span: Sequence[StorySegment]) -> str:
    """Everything the chapter will contain, asides included, as raw prose."""
    return assemble_story_so_far(
        span, (), force_all=True, use_summaries=False, include_chaptered=True
    )


def _chapter_source(span: Sequence[StorySegment]) -> str:
    return assemble_story_so_far(span, (), use_summaries=False)


def _wrap_messages(span: Sequence[StorySegment], instruction: str | None) -> list[dict]:
    if not instruction or not instruction.strip():
        raise StoryValidationError("The template has no instruction for this step")
    return [
        {"role": "user", "content": f"{STORY_TO_SUMMARIZE_LABEL}\n{_chapter_source(span)}"},
        {"role": "user", "content": instruction},
    ]


def build_chapter_summary_messages(
    span: Sequence[StorySegment], prompt: PromptConfig
) -> list[dict]:
    return _wrap_messages(span, prompt.summarizer)


def build_end_state_messages(
    span: Sequence[StorySegment], prompt: PromptConfig
) -> list[dict]:
    return _wrap_messages(span, prompt.summarizer_end_state)


async def _stream_into(
    client: CompletionBackend,
    messages: list[dict],
    draft: ChapterDraft,
    attr: str,
) -> AsyncIterator[str]:
    setattr(draft, attr, "")
    draft.error = None
    async for chunk in client.stream(None, messages):
        if is_error_chunk(chunk):
            draft.error = str(chunk)
            chunk = DEFAULT_DIVIDER + chunk
            setattr(draft, attr, getattr(draft, attr) + chunk)
            add_debug_log(f"Chapter {attr} generation failed: {draft.error}", "error")
            yield chunk
            return
        setattr(draft, attr, getattr(draft, attr) + chunk)
        yield chunk
    setattr(draft, attr, cleanup_llm_response(getattr(draft, attr)))


async def stream_chapter_summary(
    client: CompletionBackend,
    span: Sequence[StorySegment],
    prompt: PromptConfig,
    draft: ChapterDraft,
) -> AsyncIterator[str]:
    messages = build_chapter_summary_messages(span, prompt)
    async for chunk in _stream_into(client, messages, draft, "summary"):
        yield chunk


async def stream_end_state(
    client: CompletionBackend,
    span: Sequence[StorySegment],
    prompt: PromptConfig,
    draft: ChapterDraft,
) -> AsyncIterator[str]:
    messages = build_end_state_messages(span, prompt)
    async for chunk in _stream_into(client, messages, draft, "end_state_text"):
        yield chunk


def parse_end_state(text: str) -> Any:
    """Decode an end-state; only JSON objects and arrays are accepted."""
    cleaned = cleanup_llm_response(text)
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise StoryValidationError(f"End state is not valid JSON: {e}") from e
    if not isinstance(value, (dict, list)):
        raise StoryValidationError("End state must be a JSON object or array")
    return value


def commit_chapter(
    store: SegmentStore, draft: ChapterDraft, *, chapter_id: str | None = None
) -> SegmentStore:
    """Create the chapter described by ``draft``.

    On a validation error the draft keeps every typed field and its ``error``
    holds the message; the store is not touched.
    """
    try:
        if not draft.title.strip():
            raise StoryValidationError("Chapter title cannot be empty")
        if not draft.summary.strip():
            raise StoryValidationError("Chapter summary cannot be empty")
        if not draft.end_state_text.strip():
            raise StoryValidationError("Chapter end state cannot be empty")
        end_state = parse_end_state(draft.end_state_text)

        chapter = Chapter(
            id=chapter_id or new_segment_id(),
            title=draft.title.strip(),
            summary=draft.summary.strip(),
            end_state=end_state,
        )
        updated = store.add_chapter(chapter, draft.segment_ids)
    except StoryValidationError as e:
        draft.error = e.detail
        raise

    draft.error = None
    add_debug_log(
        f"Chapter '{chapter.title}' closed over {len(draft.segment_ids)} segment(s)",
        "info",
    )
    return updated
