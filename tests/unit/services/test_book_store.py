# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import json
import tempfile
from pathlib import Path
from unittest import TestCase

from storyloom.models.books import StorySegment
from storyloom.models.templates import PromptConfig, TemplateCreate, TemplateUpdate
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PersistenceError,
)


class BookStoreTest(TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.addCleanup(self.td.cleanup)
        self.root = Path(self.td.name) / "books"
        self.books = BookStore(self.root)

    def _bump_to(self, book, version):
        while book.version < version:
            book = self.books.save(book, expected_version=book.version)
        return book

    def test_create_and_load(self):
        book = self.books.create("t1", "My Tale")
        self.assertEqual(book.version, 0)
        loaded = self.books.load(book.book_id)
        self.assertEqual(loaded, book)
        data = json.loads((self.root / f"{book.book_id}.json").read_text(encoding="utf-8"))
        self.assertEqual(data["schema_version"], 1)

    def test_save_increments_version_by_one(self):
        book = self.books.create("t1")
        updated = book.model_copy(
            update={
                "story_segments": (StorySegment(id="u1", role="user", content="hi"),)
            }
        )
        stored = self.books.save(updated, expected_version=0)
        self.assertEqual(stored.version, 1)
        self.assertEqual(self.books.load(book.book_id).story_segments[0].content, "hi")

    def test_stale_version_rejected_and_state_unchanged(self):
        book = self._bump_to(self.books.create("t1", "Tale"), 4)
        path = self.root / f"{book.book_id}.json"
        before = path.read_text(encoding="utf-8")

        with self.assertRaises(ConflictError) as ctx:
            self.books.save(book.model_copy(update={"name": "Other"}), expected_version=3)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(path.read_text(encoding="utf-8"), before)
        self.assertEqual(self.books.load(book.book_id).version, 4)

    def test_rename_and_delete(self):
        book = self.books.create("t1", "Old")
        renamed = self.books.rename(book.book_id, "New", expected_version=0)
        self.assertEqual(renamed.name, "New")
        self.assertEqual([b.name for b in self.books.list()], ["New"])

        self.books.delete(book.book_id)
        with self.assertRaises(NotFoundError):
            self.books.load(book.book_id)
        with self.assertRaises(NotFoundError):
            self.books.delete(book.book_id)

    def test_invalid_document_reported(self):
        self.root.mkdir(parents=True)
        (self.root / "broken.json").write_text('{"book_id": "broken"}', encoding="utf-8")
        with self.assertRaises(PersistenceError):
            self.books.load("broken")

    def test_unsafe_id_rejected(self):
        with self.assertRaises(BadRequestError):
            self.books.load("../etc/passwd")


class TemplateStoreTest(TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.addCleanup(self.td.cleanup)
        self.templates = TemplateStore(Path(self.td.name) / "templates")

    def test_create_update_delete(self):
        template = self.templates.create(
            TemplateCreate(name="Woods", story_background="Lost.")
        )
        self.assertEqual(self.templates.load(template.template_id), template)

        updated = self.templates.update(
            template.template_id,
            TemplateUpdate(prompt=PromptConfig(narrator="Tell it.")),
        )
        self.assertEqual(updated.prompt.narrator, "Tell it.")
        self.assertEqual(updated.story_background, "Lost.")

        self.templates.delete(template.template_id)
        self.assertEqual(self.templates.list(), [])
