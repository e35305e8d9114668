# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from unittest import TestCase

from storyloom.models.books import Chapter, SegmentSummary, StorySegment
from storyloom.services.debug.debug_logging import find_debug_logs
from storyloom.services.exceptions import NotFoundError
from storyloom.services.story.context_assembler import (
    assemble_story_so_far,
    format_previous_chapters,
    render_chapter,
    split_segments_with_chapter,
)


def seg(seg_id, role, content, **extra):
    return StorySegment(id=seg_id, role=role, content=content, **extra)


SEGMENTS = (
    seg("u1", "user", "go north"),
    seg("a1", "assistant", "You head north into the woods."),
    seg("u2", "user", "look around"),
    seg("a2", "assistant", "Tall pines everywhere."),
    seg("u3", "user", "listen"),
    seg("a3", "assistant", "An owl hoots."),
)


class AssembleStorySoFarTest(TestCase):
    def test_only_assistant_prose_joined_by_blank_line(self):
        text = assemble_story_so_far(SEGMENTS, ())
        self.assertEqual(
            text,
            "You head north into the woods.\n\nTall pines everywhere.\n\nAn owl hoots.",
        )

    def test_cutoff_is_exclusive(self):
        text = assemble_story_so_far(SEGMENTS, (), until_segment_id="u3")
        self.assertEqual(text, "You head north into the woods.\n\nTall pines everywhere.")
        self.assertEqual(assemble_story_so_far(SEGMENTS, (), until_segment_id="u1"), "")

    def test_unknown_cutoff_raises(self):
        with self.assertRaises(NotFoundError):
            assemble_story_so_far(SEGMENTS, (), until_segment_id="missing")

    def test_summary_emitted_once_at_first_position(self):
        segments = (
            SEGMENTS[0],
            SEGMENTS[1].model_copy(update={"segment_summary_id": "s1"}),
            SEGMENTS[2],
            SEGMENTS[3].model_copy(update={"segment_summary_id": "s1"}),
            SEGMENTS[4],
            SEGMENTS[5],
        )
        summaries = (SegmentSummary(id="s1", content="The walk north."),)
        text = assemble_story_so_far(segments, summaries)
        self.assertEqual(text, "The walk north.\n\nAn owl hoots.")
        self.assertEqual(text.count("The walk north."), 1)
        self.assertNotIn("Tall pines", text)

    def test_missing_summary_degrades_to_placeholder(self):
        segments = (
            SEGMENTS[0],
            SEGMENTS[1].model_copy(update={"segment_summary_id": "gone"}),
        )
        text = assemble_story_so_far(segments, ())
        self.assertEqual(text, "[Missing summary with id gone]")
        warnings = find_debug_logs("warning")
        self.assertEqual(len(warnings), 1)
        self.assertIn("gone", warnings[0]["content"])

    def test_excluded_segments_skipped_unless_forced(self):
        segments = (
            SEGMENTS[0],
            SEGMENTS[1].model_copy(update={"exclude_from_prev_story": True}),
            SEGMENTS[2],
            SEGMENTS[3],
        )
        self.assertEqual(assemble_story_so_far(segments, ()), "Tall pines everywhere.")
        forced = assemble_story_so_far(segments, (), force_all=True)
        self.assertIn("You head north", forced)

    def test_chaptered_segments_left_out(self):
        segments = tuple(
            s.model_copy(update={"chapter_id": "c1"}) if s.id in ("u1", "a1") else s
            for s in SEGMENTS
        )
        text = assemble_story_so_far(segments, ())
        self.assertNotIn("You head north", text)
        with_chapters = assemble_story_so_far(segments, (), include_chaptered=True)
        self.assertIn("You head north", with_chapters)

    def test_raw_mode_ignores_summaries(self):
        segments = (
            SEGMENTS[0],
            SEGMENTS[1].model_copy(update={"segment_summary_id": "s1"}),
        )
        summaries = (SegmentSummary(id="s1", content="short"),)
        text = assemble_story_so_far(segments, summaries, use_summaries=False)
        self.assertEqual(text, "You head north into the woods.")

    def test_assembly_is_idempotent(self):
        first = assemble_story_so_far(SEGMENTS, (), until_segment_id="a3", divider="|")
        second = assemble_story_so_far(SEGMENTS, (), until_segment_id="a3", divider="|")
        self.assertEqual(first, second)
        self.assertEqual(first, "You head north into the woods.|Tall pines everywhere.")


class ChapterRenderingTest(TestCase):
    def setUp(self):
        self.chapter = Chapter(
            id="c1", title="The Woods", summary="They walk.", end_state={"location": "woods"}
        )
        self.segments = tuple(
            s.model_copy(update={"chapter_id": "c1"}) if s.id in ("u1", "a1", "u2", "a2") else s
            for s in SEGMENTS
        )

    def test_render_chapter_lists_prose_of_chapter_only(self):
        text = render_chapter(self.chapter, self.segments)
        self.assertTrue(text.startswith("## The Woods"))
        self.assertIn("Tall pines everywhere.", text)
        self.assertNotIn("go north", text)
        self.assertNotIn("An owl hoots.", text)

    def test_previous_chapters_block(self):
        block = format_previous_chapters([self.chapter])
        self.assertEqual(
            block,
            'The Woods\nThey walk.\nEND STATE:\n{\n  "location": "woods"\n}',
        )
        self.assertEqual(format_previous_chapters([]), "")

    def test_split_segments_with_chapter(self):
        chaptered, open_segments = split_segments_with_chapter(self.segments)
        self.assertEqual([s.id for s in chaptered], ["u1", "a1", "u2", "a2"])
        self.assertEqual([s.id for s in open_segments], ["u3", "a3"])
