# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Builds the text of "story so far" and the chapter blocks around it.

Only assistant prose goes into the rolled-up narrative; user turns are
instructions and stay out. Segments covered by a summary are replaced by the
summary text, emitted once at the position of the first covered segment.
Closed chapters are rendered separately and never mixed into story so far.
"""

from __future__ import annotations

import json
from typing import Iterable, Sequence

from storyloom.models.books import Chapter, SegmentSummary, StorySegment
from storyloom.services.debug.debug_logging import add_debug_log
from storyloom.services.exceptions import NotFoundError

DEFAULT_DIVIDER = "\n\n"
EXPORT_DIVIDER = "\n\n---\n\n"


def missing_summary_marker(summary_id: str) -> str:
    return f"[Missing summary with id {summary_id}]"


def _cutoff_index(segments: Sequence[StorySegment], until_segment_id: str | None) -> int:
    if until_segment_id is None:
        return len(segments)
    for idx, seg in enumerate(segments):
        if seg.id == until_segment_id:
            return idx
    raise NotFoundError(f"Segment {until_segment_id} not found")


def assemble_story_so_far(
    segments: Sequence[StorySegment],
    summaries: Iterable[SegmentSummary],
    *,
    until_segment_id: str | None = None,
    divider: str = DEFAULT_DIVIDER,
    force_all: bool = False,
    use_summaries: bool = True,
    include_chaptered: bool = False,
) -> str:
    """Return the narrative text preceding ``until_segment_id`` (exclusive).

    ``force_all`` also takes segments flagged as excluded from story so far.
    ``use_summaries=False`` emits raw content even for summarized segments.
    A summary id with no matching record produces a visible placeholder and a
    warning in the debug log; assembly itself never fails on it.
    """
    cutoff = _cutoff_index(segments, until_segment_id)
    summary_map = {s.id: s for s in summaries}

    pieces: list[str] = []
    emitted: set[str] = set()
    for seg in segments[:cutoff]:
        if seg.role != "assistant":
            continue
        if seg.exclude_from_prev_story and not force_all:
            continue
        if seg.chapter_id is not None and not include_chaptered:
            continue

        summary_id = seg.segment_summary_id
        if not use_summaries or summary_id is None:
            pieces.append(seg.content)
            continue
        if summary_id in emitted:
            continue
        emitted.add(summary_id)

        summary = summary_map.get(summary_id)
        if summary is None:
            add_debug_log(
                f"Segment {seg.id} references missing summary {summary_id}",
                "warning",
            )
            pieces.append(missing_summary_marker(summary_id))
        else:
            pieces.append(summary.content)

    return divider.join(pieces)


def split_segments_with_chapter(
    segments: Sequence[StorySegment],
) -> tuple[list[StorySegment], list[StorySegment]]:
    """Split into (chaptered, unchaptered) keeping order within each part."""
    chaptered = [s for s in segments if s.chapter_id is not None]
    open_segments = [s for s in segments if s.chapter_id is None]
    return chaptered, open_segments


def render_chapter(chapter: Chapter, segments: Sequence[StorySegment]) -> str:
    """Markdown for a closed chapter: its title and its assistant prose."""
    prose = [
        s.content
        for s in segments
        if s.chapter_id == chapter.id and s.role == "assistant"
    ]
    parts = [f"## {chapter.title}"]
    if prose:
        parts.append(DEFAULT_DIVIDER.join(prose))
    return DEFAULT_DIVIDER.join(parts)


def format_end_state(end_state: object) -> str:
    if isinstance(end_state, str):
        return end_state
    return json.dumps(end_state, indent=2, ensure_ascii=False)


def format_previous_chapters(chapters: Sequence[Chapter]) -> str:
    """Prefix block for narration: title, summary and end-state per chapter."""
    blocks = []
    for chapter in chapters:
        lines = [chapter.title, chapter.summary]
        if chapter.end_state is not None:
            lines += ["END STATE:", format_end_state(chapter.end_state)]
        blocks.append("\n".join(lines))
    return DEFAULT_DIVIDER.join(blocks)
