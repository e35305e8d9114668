# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import tempfile
from pathlib import Path
from unittest import TestCase

from fastapi.testclient import TestClient

from storyloom.core.config import AppConfig
from storyloom.main import create_app


class ApiTestBase(TestCase):
    def setUp(self):
        self.td = tempfile.TemporaryDirectory()
        self.addCleanup(self.td.cleanup)
        root = Path(self.td.name)
        self.app = create_app(
            AppConfig(
                books_root=root / "books",
                templates_root=root / "templates",
                config_dir=root / "config",
                machine={},
            )
        )
        self.client = TestClient(self.app)

    def make_template(self, **fields) -> str:
        body = {"name": "Woods", "story_background": "A traveller lost in a forest."}
        body.update(fields)
        r = self.client.post("/api/v1/templates", json=body)
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()["template_id"]

    def make_book(self, name: str = "Tale") -> dict:
        template_id = self.make_template()
        r = self.client.post(
            "/api/v1/books", json={"template_id": template_id, "name": name}
        )
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()


class TemplatesAndSettingsTest(ApiTestBase):
    def test_health(self):
        r = self.client.get("/api/v1/health")
        self.assertEqual(r.json(), {"status": "ok"})

    def test_template_crud_and_merged_view(self):
        template_id = self.make_template(prompt={"narrator": "Tell it."})

        r = self.client.get(f"/api/v1/templates/{template_id}/merged")
        self.assertEqual(r.status_code, 200, r.text)
        merged = r.json()["prompt"]
        self.assertEqual(merged["narrator"], "Tell it.")
        self.assertEqual(merged["input_tag"], "WHAT HAPPENS NEXT:")

        r = self.client.put(
            f"/api/v1/templates/{template_id}", json={"name": "Deep Woods"}
        )
        self.assertEqual(r.json()["name"], "Deep Woods")
        self.assertEqual(r.json()["prompt"]["narrator"], "Tell it.")

        self.assertEqual(
            self.client.delete(f"/api/v1/templates/{template_id}").json(), {"ok": True}
        )
        r = self.client.get(f"/api/v1/templates/{template_id}")
        self.assertEqual(r.status_code, 404)
        self.assertFalse(r.json()["ok"])

    def test_prompt_settings_update_defaults(self):
        r = self.client.put("/api/v1/settings/prompts", json={"input_tag": "NEXT:"})
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["input_tag"], "NEXT:")

        template_id = self.make_template()
        merged = self.client.get(f"/api/v1/templates/{template_id}/merged").json()
        self.assertEqual(merged["prompt"]["input_tag"], "NEXT:")
        self.assertTrue(merged["prompt"]["narrator"])


class BooksApiTest(ApiTestBase):
    def test_create_requires_existing_template(self):
        r = self.client.post("/api/v1/books", json={"template_id": "missing"})
        self.assertEqual(r.status_code, 404)

    def test_create_list_rename_delete(self):
        book = self.make_book("Old")
        self.assertEqual(book["version"], 0)

        r = self.client.patch(
            f"/api/v1/books/{book['book_id']}/name", json={"version": 0, "name": "New"}
        )
        self.assertEqual(r.json()["version"], 1)

        listing = self.client.get("/api/v1/books").json()["books"]
        self.assertEqual([(b["name"], b["version"]) for b in listing], [("New", 1)])

        self.client.delete(f"/api/v1/books/{book['book_id']}")
        self.assertEqual(self.client.get(f"/api/v1/books/{book['book_id']}").status_code, 404)

    def test_stale_save_is_rejected_and_book_unchanged(self):
        book = self.make_book()
        url = f"/api/v1/books/{book['book_id']}"
        segments = [{"id": "u1", "role": "user", "content": "hi"}]

        r = self.client.put(url, json={"version": 0, "name": "Tale", "story_segments": segments})
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["version"], 1)

        r = self.client.put(url, json={"version": 0, "name": "Other"})
        self.assertEqual(r.status_code, 409)
        self.assertFalse(r.json()["ok"])

        stored = self.client.get(url).json()
        self.assertEqual(stored["name"], "Tale")
        self.assertEqual(stored["version"], 1)
        self.assertEqual(stored["story_segments"][0]["content"], "hi")

    def test_save_with_broken_segment_invariants_is_rejected(self):
        book = self.make_book()
        url = f"/api/v1/books/{book['book_id']}"
        path = Path(self.td.name) / "books" / f"{book['book_id']}.json"
        before = path.read_text(encoding="utf-8")

        segments = [
            {
                "id": "1",
                "role": "user",
                "content": "go",
                "segment_summary_id": "S",
                "to_summarize": True,
            },
            {"id": "2", "role": "assistant", "content": "Gone."},
            {"id": "3", "role": "assistant", "content": "On.", "chapter_id": "C"},
            {"id": "3", "role": "assistant", "content": "Again."},
        ]
        r = self.client.put(
            url,
            json={
                "version": 0,
                "story_segments": segments,
                "segment_summaries": [{"id": "S", "content": "short"}],
            },
        )
        self.assertEqual(r.status_code, 400, r.text)
        self.assertFalse(r.json()["ok"])
        self.assertEqual(path.read_text(encoding="utf-8"), before)
        self.assertEqual(self.client.get(url).json()["version"], 0)

    def test_segment_patch_and_delete(self):
        book = self.make_book()
        url = f"/api/v1/books/{book['book_id']}"
        segments = [
            {"id": "u1", "role": "user", "content": "go"},
            {"id": "a1", "role": "assistant", "content": "Gone."},
        ]
        self.client.put(url, json={"version": 0, "story_segments": segments})

        r = self.client.patch(
            f"{url}/segments/a1",
            json={"version": 1, "content": "Went.", "to_summarize": True},
        )
        self.assertEqual(r.status_code, 200, r.text)
        seg = r.json()["story_segments"][1]
        self.assertEqual((seg["content"], seg["to_summarize"]), ("Went.", True))

        r = self.client.patch(f"{url}/segments/u1", json={"version": 2, "to_summarize": True})
        self.assertEqual(r.status_code, 400)

        r = self.client.delete(f"{url}/segments/a1", params={"version": 2})
        self.assertEqual([s["id"] for s in r.json()["story_segments"]], ["u1"])

    def test_export_download(self):
        book = self.make_book()
        url = f"/api/v1/books/{book['book_id']}"
        segments = [
            {"id": "u1", "role": "user", "content": "go"},
            {"id": "a1", "role": "assistant", "content": "First."},
            {"id": "u2", "role": "user", "content": "on"},
            {"id": "a2", "role": "assistant", "content": "Second.", "exclude_from_prev_story": True},
        ]
        self.client.put(url, json={"version": 0, "story_segments": segments})

        r = self.client.get(f"{url}/export")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.headers["content-type"].startswith("text/markdown"))
        self.assertIn(
            f"Story-{book['book_id']}-[04].md", r.headers["content-disposition"]
        )
        self.assertEqual(r.text, "First.\n\n---\n\nSecond.")
