# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Immutable snapshot of a book's narrative state.

A ``SegmentStore`` holds the segments, summaries and chapters of one book as
tuples of frozen models. Every mutation checks the segment invariants first
and returns a new snapshot; the receiver is never changed, so a failed
operation leaves the caller with exactly the state it had.

Segment lifecycle with respect to the annotations:

- ``to_summarize`` is toggled by the user on unsummarized, unchaptered
  assistant segments and cleared by ``add_summary``, by ``add_chapter`` or by
  unchecking.
- ``segment_summary_id`` is set once by ``add_summary`` and never changes.
- ``chapter_id`` is set once by ``add_chapter`` on the contiguous prefix of
  unchaptered segments and never changes. A chapter never ends inside the
  segments of one summary.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

from storyloom.models.books import Book, Chapter, SegmentSummary, StorySegment
from storyloom.services.exceptions import NotFoundError, StoryValidationError

_ID_WIDTH = 20
_id_lock = threading.Lock()
_last_id = 0


def new_segment_id() -> str:
    """Return a time-based id that is strictly greater than the previous one.

    The microsecond clock is zero-padded, so lexical order is creation order.
    """
    global _last_id
    with _id_lock:
        candidate = time.time_ns() // 1000
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
    return str(candidate).zfill(_ID_WIDTH)


def _require_unique(kind: str, ids: Sequence[str]) -> None:
    seen: set[str] = set()
    for item_id in ids:
        if item_id in seen:
            raise StoryValidationError(f"{kind} id {item_id} is used twice")
        seen.add(item_id)

@dataclass(frozen=True)
class SegmentStore:
    segments: tuple[StorySegment, ...] = ()
    summaries: tuple[SegmentSummary, ...] = ()
    chapters: tuple[Chapter, ...] = ()

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @classmethod
    def from_book(cls, book: Book) -> "SegmentStore":
        return cls(
            segments=tuple(book.story_segments),
            summaries=tuple(book.segment_summaries),
            chapters=tuple(book.chapters),
        )

    def to_book(self, book: Book) -> Book:
        """Copy this snapshot into ``book``; id, template, name and version stay."""
        return book.model_copy(
            update={
                "story_segments": self.segments,
                "segment_summaries": self.summaries,
                "chapters": self.chapters,
            }
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.segments)

    def index_of(self, segment_id: str) -> int:
        for idx, seg in enumerate(self.segments):
            if seg.id == segment_id:
                return idx
        raise NotFoundError(f"Segment {segment_id} not found")

    def get(self, segment_id: str) -> StorySegment:
        return self.segments[self.index_of(segment_id)]

    def summary_by_id(self, summary_id: str) -> SegmentSummary | None:
        return next((s for s in self.summaries if s.id == summary_id), None)

    def chapter_by_id(self, chapter_id: str) -> Chapter | None:
        return next((c for c in self.chapters if c.id == chapter_id), None)

    def last(self) -> StorySegment | None:
        return self.segments[-1] if self.segments else None

    def unchaptered(self) -> tuple[StorySegment, ...]:
        return tuple(s for s in self.segments if s.chapter_id is None)

    def chaptered(self, chapter_id: str) -> tuple[StorySegment, ...]:
        return tuple(s for s in self.segments if s.chapter_id == chapter_id)

    def marked_for_summary(self) -> tuple[StorySegment, ...]:
        return tuple(s for s in self.segments if s.to_summarize)

    def validate(self) -> "SegmentStore":
        """Check a whole snapshot, e.g. one sent by a client in a full save.

        Returns the store unchanged when every segment invariant holds.
        """
        _require_unique("Segment", [s.id for s in self.segments])
        _require_unique("Summary", [s.id for s in self.summaries])
        _require_unique("Chapter", [c.id for c in self.chapters])

        summary_ids = {s.id for s in self.summaries}
        chapter_order = {c.id: idx for idx, c in enumerate(self.chapters)}
        last_chapter = -1
        open_story = False
        for seg in self.segments:
            if seg.role == "user" and (seg.segment_summary_id or seg.to_summarize):
                raise StoryValidationError(
                    f"User segment {seg.id} cannot be summarized"
                )
            if seg.to_summarize and (seg.segment_summary_id or seg.chapter_id):
                raise StoryValidationError(
                    f"Segment {seg.id} is marked for summary but is already "
                    "summarized or chaptered"
                )
            summary_id = seg.segment_summary_id
            if summary_id is not None and summary_id not in summary_ids:
                raise StoryValidationError(
                    f"Segment {seg.id} refers to unknown summary {summary_id}"
                )

            if seg.chapter_id is None:
                open_story = True
                continue
            if seg.chapter_id not in chapter_order:
                raise StoryValidationError(
                    f"Segment {seg.id} refers to unknown chapter {seg.chapter_id}"
                )
            if open_story or chapter_order[seg.chapter_id] < last_chapter:
                raise StoryValidationError(
                    "Chaptered segments must form a prefix of the book, in chapter order"
                )
            last_chapter = chapter_order[seg.chapter_id]

        for summary_id in summary_ids:
            chapters = {
                s.chapter_id for s in self.segments if s.segment_summary_id == summary_id
            }
            if len(chapters) > 1:
                raise StoryValidationError(
                    f"Summary {summary_id} spans a chapter boundary"
                )
        return self

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _with_segment(self, idx: int, segment: StorySegment) -> "SegmentStore":
        segments = self.segments[:idx] + (segment,) + self.segments[idx + 1 :]
        return replace(self, segments=segments)

    def _update(self, segment_id: str, **changes) -> "SegmentStore":
        idx = self.index_of(segment_id)
        return self._with_segment(
            idx, self.segments[idx].model_copy(update=changes)
        )

    def append(self, segment: StorySegment) -> "SegmentStore":
        if any(s.id == segment.id for s in self.segments):
            raise StoryValidationError(f"Segment id {segment.id} already exists")
        if segment.segment_summary_id is not None or segment.chapter_id is not None:
            raise StoryValidationError(
                "New segments cannot carry a summary or chapter reference"
            )
        if segment.role == "assistant":
            previous = self.last()
            if previous is None or previous.role != "user":
                raise StoryValidationError(
                    "An assistant segment must directly follow a user segment"
                )
        return replace(self, segments=self.segments + (segment,))

    def replace_content(
        self, segment_id: str, content: str, *, incomplete: bool | None = None
    ) -> "SegmentStore":
        return self._update(segment_id, content=content, incomplete=incomplete)

    def append_content(self, segment_id: str, chunk: str) -> "SegmentStore":
        current = self.get(segment_id)
        return self._update(segment_id, content=current.content + chunk)

    def mark_for_summary(self, segment_id: str, checked: bool) -> "SegmentStore":
        seg = self.get(segment_id)
        if not checked:
            return self._update(segment_id, to_summarize=None)
        if seg.role != "assistant":
            raise StoryValidationError("Only assistant segments can be summarized")
        if seg.segment_summary_id is not None:
            raise StoryValidationError(f"Segment {segment_id} is already summarized")
        if seg.chapter_id is not None:
            raise StoryValidationError(
                f"Segment {segment_id} belongs to a closed chapter"
            )
        return self._update(segment_id, to_summarize=True)

    def set_excluded(self, segment_id: str, excluded: bool) -> "SegmentStore":
        return self._update(segment_id, exclude_from_prev_story=excluded or None)

    def add_summary(
        self, summary: SegmentSummary, segment_ids: Sequence[str]
    ) -> "SegmentStore":
        """Record ``summary`` and point every listed segment at it."""
        if not segment_ids:
            raise StoryValidationError("A summary must cover at least one segment")
        if self.summary_by_id(summary.id) is not None:
            raise StoryValidationError(f"Summary id {summary.id} already exists")

        targets = set(segment_ids)
        for seg_id in targets:
            seg = self.get(seg_id)
            if seg.role != "assistant":
                raise StoryValidationError(
                    f"Segment {seg_id} is a user segment and cannot be summarized"
                )
            if seg.segment_summary_id is not None:
                raise StoryValidationError(f"Segment {seg_id} is already summarized")

        segments = tuple(
            s.model_copy(update={"segment_summary_id": summary.id, "to_summarize": None})
            if s.id in targets
            else s
            for s in self.segments
        )
        return replace(
            self, segments=segments, summaries=self.summaries + (summary,)
        )

    def add_chapter(
        self, chapter: Chapter, segment_ids: Sequence[str]
    ) -> "SegmentStore":
        """Record ``chapter`` over the leading unchaptered segments ``segment_ids``."""
        if not segment_ids:
            raise StoryValidationError("A chapter must cover at least one segment")
        if self.chapter_by_id(chapter.id) is not None:
            raise StoryValidationError(f"Chapter id {chapter.id} already exists")

        for seg_id in segment_ids:
            if self.get(seg_id).chapter_id is not None:
                raise StoryValidationError(f"Segment {seg_id} is already chaptered")

        prefix = [s.id for s in self.unchaptered()[: len(segment_ids)]]
        if list(segment_ids) != prefix:
            raise StoryValidationError(
                "A chapter must cover a contiguous prefix of the unchaptered segments"
            )
        self.check_chapter_boundary(segment_ids)

        # Chaptered segments leave the summary selection.
        targets = set(segment_ids)
        segments = tuple(
            s.model_copy(update={"chapter_id": chapter.id, "to_summarize": None})
            if s.id in targets
            else s
            for s in self.segments
        )
        return replace(self, segments=segments, chapters=self.chapters + (chapter,))

    def check_chapter_boundary(self, segment_ids: Sequence[str]) -> None:
        """Reject a chapter span that would split the segments of one summary."""
        targets = set(segment_ids)
        inside = {
            s.segment_summary_id
            for s in self.segments
            if s.id in targets and s.segment_summary_id is not None
        }
        outside = {
            s.segment_summary_id
            for s in self.segments
            if s.id not in targets and s.segment_summary_id is not None
        }
        if inside & outside:
            raise StoryValidationError(
                "A chapter cannot end inside a summary; close it before or after "
                "all segments of that summary"
            )

    def remove(self, segment_id: str) -> "SegmentStore":
        idx = self.index_of(segment_id)
        return replace(self, segments=self.segments[:idx] + self.segments[idx + 1 :])

    def remove_many(self, segment_ids: Iterable[str]) -> "SegmentStore":
        store = self
        for seg_id in segment_ids:
            store = store.remove(seg_id)
        return store
