# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Chapter wrap-up: preview, the two generation streams, commit and read."""

from fastapi import APIRouter, Depends, Query

from storyloom.api.v1.deps import (
    get_book_store,
    get_completion_client,
    get_prompts,
    get_template_store,
)
from storyloom.api.v1.http_responses import text_stream
from storyloom.api.v1.story_routes.common import (
    book_payload,
    load_book_at_version,
    load_book_template,
    save_store,
)
from storyloom.core.prompts import PromptDefaults, merged_template
from storyloom.models.books import ChapterCommitRequest, ChapterSpanRequest
from storyloom.models.templates import PromptConfig
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.exceptions import NotFoundError
from storyloom.services.llm.llm import CompletionBackend
from storyloom.services.story.chapter_wrap import (
    ChapterDraft,
    chapter_preview,
    commit_chapter,
    select_chapter_span,
    start_chapter,
    stream_chapter_summary,
    stream_end_state,
)
from storyloom.services.story.context_assembler import render_chapter
from storyloom.services.story.segment_store import SegmentStore

router = APIRouter(prefix="/books/{book_id}/chapters", tags=["Chapters"])


def _span_and_prompt(
    books: BookStore,
    templates: TemplateStore,
    prompts: PromptDefaults,
    book_id: str,
    through_segment_id: str,
):
    book = books.load(book_id)
    span = select_chapter_span(SegmentStore.from_book(book), through_segment_id)
    template = merged_template(load_book_template(templates, book), prompts)
    return span, template.prompt


@router.get("/preview")
async def api_chapter_preview(
    book_id: str,
    through_segment_id: str = Query(...),
    books: BookStore = Depends(get_book_store),
) -> dict:
    span = select_chapter_span(
        SegmentStore.from_book(books.load(book_id)), through_segment_id
    )
    return {"segment_ids": [s.id for s in span], "content": chapter_preview(span)}


@router.post("/summary/stream")
async def api_chapter_summary_stream(
    book_id: str,
    payload: ChapterSpanRequest,
    books: BookStore = Depends(get_book_store),
    templates: TemplateStore = Depends(get_template_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
):
    span, prompt = _span_and_prompt(
        books, templates, prompts, book_id, payload.through_segment_id
    )
    return _draft_stream(stream_chapter_summary, client, span, prompt)


@router.post("/end-state/stream")
async def api_chapter_end_state_stream(
    book_id: str,
    payload: ChapterSpanRequest,
    books: BookStore = Depends(get_book_store),
    templates: TemplateStore = Depends(get_template_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
):
    span, prompt = _span_and_prompt(
        books, templates, prompts, book_id, payload.through_segment_id
    )
    return _draft_stream(stream_end_state, client, span, prompt)


def _draft_stream(streamer, client: CompletionBackend, span, prompt: PromptConfig):
    draft = ChapterDraft(segment_ids=[s.id for s in span])
    return text_stream(streamer(client, span, prompt, draft))


@router.post("")
async def api_commit_chapter(
    book_id: str,
    payload: ChapterCommitRequest,
    books: BookStore = Depends(get_book_store),
) -> dict:
    book = load_book_at_version(books, book_id, payload.version)
    store = SegmentStore.from_book(book)
    draft = start_chapter(store, payload.through_segment_id)
    draft.title = payload.title
    draft.summary = payload.summary
    draft.end_state_text = payload.end_state
    store = commit_chapter(store, draft)
    return book_payload(save_store(books, book, store, payload.version))


@router.get("/{chapter_id}")
async def api_get_chapter(
    book_id: str, chapter_id: str, books: BookStore = Depends(get_book_store)
) -> dict:
    store = SegmentStore.from_book(books.load(book_id))
    chapter = store.chapter_by_id(chapter_id)
    if chapter is None:
        raise NotFoundError(f"Chapter {chapter_id} not found")
    return {
        "chapter": chapter.model_dump(mode="json"),
        "segment_ids": [s.id for s in store.chaptered(chapter_id)],
        "content": render_chapter(chapter, store.segments),
    }
