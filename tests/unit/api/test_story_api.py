# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from dataclasses import replace

from storyloom.api.v1.deps import get_completion_client
from storyloom.services.books.book_store import CONFLICT_MESSAGE
from storyloom.services.llm.llm import ErrorChunk

from test_books_api import ApiTestBase


class FakeClient:
    def __init__(self):
        self.chunks = []
        self.calls = []

    async def stream(self, system_message, messages):
        self.calls.append((system_message, messages))
        for chunk in self.chunks:
            yield chunk

    async def complete(self, system_message, messages):
        return "".join(self.chunks)


class RenamingClient(FakeClient):
    """Renames the book while the reply streams, as a second tab would."""

    def __init__(self, books, book_id):
        super().__init__()
        self.books = books
        self.book_id = book_id

    async def stream(self, system_message, messages):
        self.books.rename(self.book_id, "Changed elsewhere", expected_version=0)
        async for chunk in super().stream(system_message, messages):
            yield chunk


class StoryApiTest(ApiTestBase):
    def setUp(self):
        super().setUp()
        self.fake = FakeClient()
        self.app.dependency_overrides[get_completion_client] = lambda: self.fake
        self.book_id = self.make_book()["book_id"]
        self.url = f"/api/v1/books/{self.book_id}"

    def book(self) -> dict:
        return self.client.get(self.url).json()

    def narrate(self, text: str, *chunks: str, version: int | None = None):
        self.fake.chunks = list(chunks)
        if version is None:
            version = self.book()["version"]
        return self.client.post(
            f"{self.url}/narrate/stream", json={"version": version, "input": text}
        )

    def test_narrate_streams_and_saves(self):
        r = self.narrate("go north", "You ", "walk.")
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.text, "You walk.")
        self.assertEqual(r.headers["x-book-version"], "1")

        book = self.book()
        self.assertEqual(book["version"], 1)
        self.assertEqual(
            [(s["role"], s["content"]) for s in book["story_segments"]],
            [("user", "go north"), ("assistant", "You walk.")],
        )

        _, messages = self.fake.calls[0]
        self.assertTrue(messages[0]["content"].startswith("STORY BACKGROUND:\n"))
        self.assertTrue(messages[-1]["content"].endswith("WHAT HAPPENS NEXT:\ngo north"))

    def test_narrate_with_stale_version_is_rejected(self):
        self.narrate("go north", "ok")
        r = self.narrate("again", "no", version=0)
        self.assertEqual(r.status_code, 409)
        self.assertFalse(r.json()["ok"])
        self.assertEqual(len(self.book()["story_segments"]), 2)

    def test_blank_input_is_rejected_before_streaming(self):
        r = self.narrate("   ", "never")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.fake.calls, [])

    def test_failed_stream_is_saved_as_incomplete(self):
        r = self.narrate("go", "Half", ErrorChunk("Error: upstream down"))
        self.assertIn("Error: upstream down", r.text)
        reply = self.book()["story_segments"][-1]
        self.assertTrue(reply["incomplete"])
        self.assertTrue(reply["content"].startswith("Half\n\nError:"))

        logs = self.client.get("/api/v1/debug/logs", params={"type": "error"}).json()
        self.assertTrue(any("upstream down" in e["content"] for e in logs))

    def test_redo_replaces_last_reply(self):
        self.narrate("go north", "First.")
        first_messages = self.fake.calls[0][1]

        self.fake.chunks = ["Second."]
        r = self.client.post(f"{self.url}/redo/stream", json={"version": 1})
        self.assertEqual(r.text, "Second.")
        self.assertEqual(self.fake.calls[1][1], first_messages)

        book = self.book()
        self.assertEqual(book["version"], 2)
        self.assertEqual(
            [s["content"] for s in book["story_segments"]], ["go north", "Second."]
        )

    def test_redo_without_exchange_is_rejected(self):
        r = self.client.post(f"{self.url}/redo/stream", json={"version": 0})
        self.assertEqual(r.status_code, 400)

    def test_enhance_streams_without_saving(self):
        self.narrate("go north", "Plain.")
        seg_id = self.book()["story_segments"][1]["id"]

        self.fake.chunks = ["Vivid."]
        r = self.client.post(
            f"{self.url}/segments/{seg_id}/enhance/stream",
            json={"instruction": "More colour.", "include_prev_story": False},
        )
        self.assertEqual(r.text, "Vivid.")
        self.assertEqual(self.fake.calls[-1][1][0]["content"], "Plain.\n\nPROMPT:\n\nMore colour.")
        self.assertEqual(self.book()["version"], 1)

    def test_summary_stream_and_commit(self):
        self.narrate("go", "One.")
        self.narrate("on", "Two.")
        book = self.book()
        a1, a2 = [s["id"] for s in book["story_segments"] if s["role"] == "assistant"]
        version = book["version"]
        for seg_id in (a1, a2):
            r = self.client.patch(
                f"{self.url}/segments/{seg_id}",
                json={"version": version, "to_summarize": True},
            )
            version = r.json()["version"]

        self.fake.chunks = ["Short ", "tale."]
        r = self.client.post(f"{self.url}/summaries/stream", json={"paragraphs": 1})
        self.assertEqual(r.text, "Short tale.")
        self.assertIn("1 paragraphs long", self.fake.calls[-1][0])
        self.assertEqual(self.fake.calls[-1][1][0]["content"], "One.\n\nTwo.")
        self.assertEqual(self.book()["version"], version)

        r = self.client.post(
            f"{self.url}/summaries", json={"version": version, "content": "Short tale."}
        )
        self.assertEqual(r.status_code, 200, r.text)
        book = r.json()
        summary_id = book["segment_summaries"][0]["id"]
        assistants = [s for s in book["story_segments"] if s["role"] == "assistant"]
        self.assertTrue(all(s["segment_summary_id"] == summary_id for s in assistants))
        self.assertTrue(all(not s["to_summarize"] for s in assistants))

    def test_summary_without_selection_is_rejected(self):
        r = self.client.post(f"{self.url}/summaries/stream", json={})
        self.assertEqual(r.status_code, 400)

    def test_chapter_preview_stream_commit_and_read(self):
        self.narrate("go", "One.")
        self.narrate("on", "Two.")
        book = self.book()
        ids = [s["id"] for s in book["story_segments"]]

        r = self.client.get(
            f"{self.url}/chapters/preview", params={"through_segment_id": ids[1]}
        )
        self.assertEqual(r.json(), {"segment_ids": ids[:2], "content": "One."})

        self.fake.chunks = ["```json\n", '{"hp": 3}', "\n```"]
        r = self.client.post(
            f"{self.url}/chapters/end-state/stream", json={"through_segment_id": ids[1]}
        )
        self.assertIn('{"hp": 3}', r.text)
        self.assertIsNone(self.fake.calls[-1][0])
        self.assertEqual(
            self.fake.calls[-1][1][0]["content"], "STORY TO SUMMARIZE:\nOne."
        )

        commit = {
            "version": book["version"],
            "through_segment_id": ids[1],
            "title": "",
            "summary": "They set out.",
            "end_state": '{"hp": 3}',
        }
        r = self.client.post(f"{self.url}/chapters", json=commit)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.book()["chapters"], [])

        commit["title"] = "Departure"
        r = self.client.post(f"{self.url}/chapters", json=commit)
        self.assertEqual(r.status_code, 200, r.text)
        chapter = r.json()["chapters"][0]
        self.assertEqual(chapter["end_state"], {"hp": 3})

        r = self.client.get(f"{self.url}/chapters/{chapter['id']}")
        self.assertEqual(r.json()["segment_ids"], ids[:2])
        self.assertTrue(r.json()["content"].startswith("## Departure\n\n"))

        # The next narration sees the chapter block instead of its prose.
        self.narrate("rest", "Three.")
        context = self.fake.calls[-1][1][0]["content"]
        self.assertIn("PREVIOUS CHAPTERS:\nDeparture\nThey set out.", context)
        self.assertIn("STORY SO FAR:\nTwo.", context)
        self.assertNotIn("One.", context)

    def test_missing_model_configuration_is_reported(self):
        self.app.dependency_overrides.clear()
        r = self.narrate("go", "x")
        self.assertEqual(r.status_code, 400)
        self.assertFalse(r.json()["ok"])

    def test_llm_log_endpoints(self):
        r = self.client.get("/api/v1/debug/llm_logs")
        self.assertEqual(r.json(), [])
        self.assertEqual(self.client.delete("/api/v1/debug/logs").json(), {"status": "ok"})

    def test_failed_save_after_stream_reports_inline_error(self):
        self.fake = RenamingClient(self.app.state.book_store, self.book_id)
        r = self.narrate("go", "Lost words.", version=0)

        # The header is sent before the save and names the version it would produce.
        self.assertEqual(r.headers["x-book-version"], "1")
        self.assertTrue(r.text.startswith("Lost words.\n\nError: "))
        self.assertIn(CONFLICT_MESSAGE, r.text)

        book = self.book()
        self.assertEqual((book["name"], book["version"]), ("Changed elsewhere", 1))
        self.assertEqual(book["story_segments"], [])

    def test_broken_summary_system_message_is_rejected_before_streaming(self):
        self.narrate("go", "One.")
        seg_id = self.book()["story_segments"][1]["id"]
        self.client.patch(
            f"{self.url}/segments/{seg_id}", json={"version": 1, "to_summarize": True}
        )
        prompts = self.app.state.prompts
        self.app.state.prompts = replace(
            prompts,
            system_messages={**prompts.system_messages, "summarize_segments": "{0}"},
        )
        calls_before = len(self.fake.calls)

        r = self.client.post(f"{self.url}/summaries/stream", json={"paragraphs": 1})
        self.assertEqual(r.status_code, 400)
        self.assertFalse(r.json()["ok"])
        self.assertEqual(len(self.fake.calls), calls_before)
