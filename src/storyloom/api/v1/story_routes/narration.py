# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Narration, redo and segment enhancement streams.

Validation happens before the response starts, so a bad request still gets a
JSON error. Once streaming, failures arrive inline as ``Error:`` text. The
book is saved when the stream ends. ``X-Book-Version`` is sent before that
save runs, so it is tentative: it names the version a successful save
produces. When the save fails the stream ends with an ``Error:`` line and the
client reloads the book; a cancelled stream saves nothing.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends

from storyloom.api.v1.deps import (
    get_book_store,
    get_completion_client,
    get_max_stream_s,
    get_prompts,
    get_template_store,
)
from storyloom.api.v1.http_responses import text_stream
from storyloom.api.v1.story_routes.common import (
    VERSION_HEADER,
    load_book_at_version,
    load_book_template,
    save_store,
)
from storyloom.core.prompts import PromptDefaults
from storyloom.models.books import Book, EnhanceRequest, NarrateRequest, VersionedRequest
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.debug.debug_logging import add_debug_log
from storyloom.services.exceptions import ServiceError
from storyloom.services.llm.llm import CompletionBackend, ErrorChunk
from storyloom.services.story.enhancer import stream_enhancement
from storyloom.services.story.narration import NarrationCycle
from storyloom.services.story.segment_store import SegmentStore

router = APIRouter(tags=["Story"])


async def _stream_and_persist(
    cycle: NarrationCycle, books: BookStore, book: Book, version: int
) -> AsyncIterator[str]:
    async for chunk in cycle.stream():
        yield chunk
    if not cycle.dirty:
        return
    try:
        save_store(books, book, cycle.store, version)
    except ServiceError as e:
        add_debug_log(f"Saving narration for book {book.book_id} failed: {e.detail}", "error")
        yield "\n\n" + ErrorChunk.from_message(e.detail)


def _prepare_cycle(
    books: BookStore,
    templates: TemplateStore,
    prompts: PromptDefaults,
    client: CompletionBackend,
    max_stream_s: float,
    book_id: str,
    version: int,
) -> tuple[Book, NarrationCycle]:
    book = load_book_at_version(books, book_id, version)
    cycle = NarrationCycle(
        SegmentStore.from_book(book),
        load_book_template(templates, book),
        prompts,
        client,
        max_stream_s=max_stream_s,
    )
    return book, cycle


@router.post("/books/{book_id}/narrate/stream")
async def api_narrate_stream(
    book_id: str,
    payload: NarrateRequest,
    books: BookStore = Depends(get_book_store),
    templates: TemplateStore = Depends(get_template_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
    max_stream_s: float = Depends(get_max_stream_s),
):
    book, cycle = _prepare_cycle(
        books, templates, prompts, client, max_stream_s, book_id, payload.version
    )
    cycle.begin(payload.input)
    return text_stream(
        _stream_and_persist(cycle, books, book, payload.version),
        headers={VERSION_HEADER: str(payload.version + 1)},
    )


@router.post("/books/{book_id}/redo/stream")
async def api_redo_stream(
    book_id: str,
    payload: VersionedRequest,
    books: BookStore = Depends(get_book_store),
    templates: TemplateStore = Depends(get_template_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
    max_stream_s: float = Depends(get_max_stream_s),
):
    book, cycle = _prepare_cycle(
        books, templates, prompts, client, max_stream_s, book_id, payload.version
    )
    cycle.begin_redo()
    return text_stream(
        _stream_and_persist(cycle, books, book, payload.version),
        headers={VERSION_HEADER: str(payload.version + 1)},
    )


@router.post("/books/{book_id}/segments/{segment_id}/enhance/stream")
async def api_enhance_stream(
    book_id: str,
    segment_id: str,
    payload: EnhanceRequest,
    books: BookStore = Depends(get_book_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
):
    """Stream a rewrite of one segment; the client commits it via PATCH."""
    store = SegmentStore.from_book(books.load(book_id))
    chunks = stream_enhancement(
        client,
        store,
        segment_id,
        payload.instruction,
        prompts,
        include_prev_story=payload.include_prev_story,
    )
    return text_stream(chunks)
