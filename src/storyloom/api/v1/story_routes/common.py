# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from __future__ import annotations

from typing import Any, Dict

from storyloom.models.books import Book
from storyloom.models.templates import Template
from storyloom.services.books.book_store import CONFLICT_MESSAGE, BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.exceptions import ConflictError
from storyloom.services.story.segment_store import SegmentStore

VERSION_HEADER = "X-Book-Version"


def load_book_at_version(books: BookStore, book_id: str, version: int) -> Book:
    """Load a book and reject the request early when the client is behind."""
    book = books.load(book_id)
    if book.version != version:
        raise ConflictError(CONFLICT_MESSAGE)
    return book


def load_book_template(templates: TemplateStore, book: Book) -> Template:
    return templates.load(book.template_id)


def save_store(
    books: BookStore, book: Book, store: SegmentStore, version: int
) -> Book:
    return books.save(store.to_book(book), expected_version=version)


def book_payload(book: Book) -> Dict[str, Any]:
    return book.model_dump(mode="json")
