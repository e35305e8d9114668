# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Pydantic models for books, their story segments, summaries and chapters.

Domain records are frozen and hold tuples, so a book snapshot can be shared
without anyone mutating it underneath. Request bodies follow at the bottom.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SegmentRole = Literal["user", "assistant"]


class StorySegment(BaseModel):
    """One turn of the narrative: the reader's input or generated prose."""

    model_config = ConfigDict(frozen=True)

    id: str
    day: int = 0
    role: SegmentRole
    content: str = ""
    exclude_from_prev_story: bool | None = None
    to_summarize: bool | None = None
    segment_summary_id: str | None = None
    chapter_id: str | None = None
    incomplete: bool | None = None


class SegmentSummary(BaseModel):
    """Condensed text standing in for a contiguous run of assistant segments."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str


class Chapter(BaseModel):
    """A closed narrative unit with its summary and structured end-state."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    summary: str
    end_state: Any = None


class Book(BaseModel):
    """Aggregate root persisted as one JSON document."""

    model_config = ConfigDict(frozen=True)

    book_id: str
    template_id: str
    name: str | None = None
    story_segments: tuple[StorySegment, ...] = ()
    segment_summaries: tuple[SegmentSummary, ...] = ()
    chapters: tuple[Chapter, ...] = ()
    version: int = 0


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class BookCreate(BaseModel):
    """Request body for ``POST /api/v1/books``."""

    template_id: str
    name: str | None = None


class BookSave(BaseModel):
    """Request body for ``PUT /api/v1/books/{book_id}``: a whole-book save."""

    version: int
    name: str | None = None
    story_segments: list[StorySegment] = Field(default_factory=list)
    segment_summaries: list[SegmentSummary] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)


class BookRename(BaseModel):
    version: int
    name: str


class VersionedRequest(BaseModel):
    version: int


class NarrateRequest(BaseModel):
    version: int
    input: str


class SegmentUpdate(BaseModel):
    """Request body for ``PATCH /api/v1/books/{book_id}/segments/{segment_id}``."""

    version: int
    content: str | None = None
    to_summarize: bool | None = None
    exclude_from_prev_story: bool | None = None


class EnhanceRequest(BaseModel):
    instruction: str
    include_prev_story: bool = True


class SummaryStreamRequest(BaseModel):
    paragraphs: int | None = Field(default=None, ge=1)


class SummaryCommitRequest(BaseModel):
    version: int
    content: str


class ChapterSpanRequest(BaseModel):
    through_segment_id: str


class ChapterCommitRequest(BaseModel):
    version: int
    through_segment_id: str
    title: str = ""
    summary: str = ""
    end_state: str = ""
