# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Collapse a contiguous run of marked assistant segments into one summary.

The flow is draft first, commit second: ``start_summary`` validates the
selection and builds a ``SummaryDraft``; ``stream_summary`` fills its text
buffer from the model; the user may edit the text; ``commit_summary``
validates again and writes the summary into a new store snapshot. Raw segment
content is never touched, only shadowed during context assembly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator

from storyloom.core.prompts import PromptDefaults
from storyloom.models.books import SegmentSummary, StorySegment
from storyloom.services.debug.debug_logging import add_debug_log
from storyloom.services.exceptions import StoryValidationError
from storyloom.services.llm.llm import CompletionBackend, is_error_chunk
from storyloom.services.story.context_assembler import DEFAULT_DIVIDER
from storyloom.services.story.segment_store import SegmentStore, new_segment_id
from storyloom.utils.llm_parsing import cleanup_llm_response


@dataclass
class SummaryDraft:
    segment_ids: list[str]
    source_text: str
    paragraphs: int
    text: str = ""
    error: str | None = None


def validate_summary_selection(store: SegmentStore) -> list[StorySegment]:
    """Return the marked segments in order, or raise if they cannot be summarized.

    The marked set must be non-empty, assistant-only, unsummarized,
    unchaptered and contiguous among the assistant segments.
    """
    marked = list(store.marked_for_summary())
    if not marked:
        raise StoryValidationError("No segments are marked for summarization")

    for seg in marked:
        if seg.role != "assistant":
            raise StoryValidationError(
                f"Segment {seg.id} is a user segment and cannot be summarized"
            )
        if seg.segment_summary_id is not None:
            raise StoryValidationError(f"Segment {seg.id} is already summarized")
        if seg.chapter_id is not None:
            raise StoryValidationError(f"Segment {seg.id} belongs to a closed chapter")

    assistant_ids = [s.id for s in store.segments if s.role == "assistant"]
    positions = [assistant_ids.index(s.id) for s in marked]
    if positions[-1] - positions[0] + 1 != len(positions):
        raise StoryValidationError(
            "Segments marked for summarization must be contiguous; "
            "unmark or mark the segments in between"
        )
    return marked


def start_summary(store: SegmentStore, paragraphs: int | None = None) -> SummaryDraft:
    marked = validate_summary_selection(store)
    if paragraphs is None:
        paragraphs = len(marked)
    if paragraphs < 1:
        raise StoryValidationError("Paragraph count must be at least 1")
    return SummaryDraft(
        segment_ids=[s.id for s in marked],
        source_text=DEFAULT_DIVIDER.join(s.content for s in marked),
        paragraphs=paragraphs,
    )


def build_summary_messages(
    draft: SummaryDraft, prompts: PromptDefaults
) -> tuple[str, list[dict]]:
    system_message = prompts.system_message(
        "summarize_segments", paragraphs=draft.paragraphs
    )
    return system_message, [{"role": "user", "content": draft.source_text}]


def stream_summary(
    client: CompletionBackend, draft: SummaryDraft, prompts: PromptDefaults
) -> AsyncIterator[str]:
    """Stream the model's summary into ``draft.text`` and re-yield each chunk.

    The messages are built before the stream is returned, so a broken system
    message is reported before any output.
    """
    system_message, messages = build_summary_messages(draft, prompts)
    return _stream_summary_into(client, draft, system_message, messages)


async def _stream_summary_into(
    client: CompletionBackend,
    draft: SummaryDraft,
    system_message: str,
    messages: list[dict],
) -> AsyncIterator[str]:
    draft.text = ""
    draft.error = None
    async for chunk in client.stream(system_message, messages):
        if is_error_chunk(chunk):
            draft.error = str(chunk)
            chunk = DEFAULT_DIVIDER + chunk
            draft.text += chunk
            add_debug_log(f"Summary generation failed: {draft.error}", "error")
            yield chunk
            return
        draft.text += chunk
        yield chunk
    draft.text = cleanup_llm_response(draft.text)


def commit_summary(
    store: SegmentStore, text: str, *, summary_id: str | None = None
) -> SegmentStore:
    """Create one summary from ``text`` over the currently marked segments."""
    marked = validate_summary_selection(store)
    if not text or not text.strip():
        raise StoryValidationError("Summary text cannot be empty")
    summary = SegmentSummary(id=summary_id or new_segment_id(), content=text.strip())
    add_debug_log(
        f"Summary {summary.id} covers {len(marked)} segment(s)", "info"
    )
    return store.add_summary(summary, [s.id for s in marked])
