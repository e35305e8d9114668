# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Markdown export of a whole book."""

from __future__ import annotations

from dataclasses import dataclass

from storyloom.models.books import Book
from storyloom.services.story.context_assembler import (
    EXPORT_DIVIDER,
    assemble_story_so_far,
)


@dataclass(frozen=True)
class BookExport:
    filename: str
    content: str


def export_filename(book: Book) -> str:
    return f"Story-{book.book_id}-[{len(book.story_segments):02d}].md"


def export_book(book: Book) -> BookExport:
    """Every assistant segment as raw prose, asides and closed chapters included."""
    content = assemble_story_so_far(
        book.story_segments,
        book.segment_summaries,
        divider=EXPORT_DIVIDER,
        force_all=True,
        use_summaries=False,
        include_chaptered=True,
    )
    return BookExport(filename=export_filename(book), content=content)
