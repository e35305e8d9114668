# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""JSON-file persistence for books with optimistic concurrency.

Each book is one ``<book_id>.json`` document under the store root, validated
against ``resources/schemas/book-v1.schema.json`` on every read. A save must
carry the version it was based on; the stored version then grows by one.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict

import jsonschema

from storyloom.core.config import CURRENT_SCHEMA_VERSION, load_schema
from storyloom.models.books import Book
from storyloom.services.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PersistenceError,
)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

CONFLICT_MESSAGE = "Book was changed elsewhere, refresh before saving"


def new_document_id() -> str:
    return uuid.uuid4().hex


def document_path(root: Path, doc_id: str) -> Path:
    if not _SAFE_ID.match(doc_id or ""):
        raise BadRequestError(f"Invalid id: {doc_id!r}")
    return root / f"{doc_id}.json"


def read_document(path: Path, kind: str) -> Dict[str, Any]:
    """Load and schema-check one stored document."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise NotFoundError(f"{kind.capitalize()} {path.stem} not found")
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(f"Failed to read {kind} {path.stem}: {e}") from e

    try:
        jsonschema.validate(data, load_schema(kind))
    except jsonschema.ValidationError as exc:
        raise PersistenceError(f"Invalid {kind} at {path.name}: {exc.message}")
    return data


def write_document(path: Path, data: Dict[str, Any]) -> None:
    """Write ``data`` atomically: a temp file in the same folder, then rename."""
    payload = {"schema_version": CURRENT_SCHEMA_VERSION, **data}
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise PersistenceError(f"Failed to write {path.name}: {e}") from e


class BookStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, book_id: str) -> Path:
        return document_path(self.root, book_id)

    def _write(self, book: Book) -> None:
        write_document(self._path(book.book_id), book.model_dump(mode="json"))

    def load(self, book_id: str) -> Book:
        return Book.model_validate(read_document(self._path(book_id), "book"))

    def list(self) -> list[Book]:
        if not self.root.exists():
            return []
        books = [self.load(p.stem) for p in sorted(self.root.glob("*.json"))]
        return sorted(books, key=lambda b: ((b.name or "").lower(), b.book_id))

    def create(self, template_id: str, name: str | None = None) -> Book:
        book = Book(book_id=new_document_id(), template_id=template_id, name=name)
        with self._lock:
            self._write(book)
        return book

    def save(self, book: Book, expected_version: int) -> Book:
        """Store ``book`` if ``expected_version`` matches; return the stored aggregate."""
        with self._lock:
            current = self.load(book.book_id)
            if current.version != expected_version:
                raise ConflictError(CONFLICT_MESSAGE)
            stored = book.model_copy(update={"version": current.version + 1})
            self._write(stored)
        return stored

    def rename(self, book_id: str, name: str, expected_version: int) -> Book:
        book = self.load(book_id)
        return self.save(book.model_copy(update={"name": name}), expected_version)

    def delete(self, book_id: str) -> None:
        path = self._path(book_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                raise NotFoundError(f"Book {book_id} not found")
            except OSError as e:
                raise PersistenceError(f"Failed to delete book {book_id}: {e}") from e
