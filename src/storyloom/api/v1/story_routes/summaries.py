# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from fastapi import APIRouter, Depends

from storyloom.api.v1.deps import get_book_store, get_completion_client, get_prompts
from storyloom.api.v1.http_responses import text_stream
from storyloom.api.v1.story_routes.common import (
    book_payload,
    load_book_at_version,
    save_store,
)
from storyloom.core.prompts import PromptDefaults
from storyloom.models.books import SummaryCommitRequest, SummaryStreamRequest
from storyloom.services.books.book_store import BookStore
from storyloom.services.llm.llm import CompletionBackend
from storyloom.services.story.segment_store import SegmentStore
from storyloom.services.story.summarization import (
    commit_summary,
    start_summary,
    stream_summary,
)

router = APIRouter(tags=["Summaries"])


@router.post("/books/{book_id}/summaries/stream")
async def api_summary_stream(
    book_id: str,
    payload: SummaryStreamRequest,
    books: BookStore = Depends(get_book_store),
    prompts: PromptDefaults = Depends(get_prompts),
    client: CompletionBackend = Depends(get_completion_client),
):
    """Stream a summary draft of the marked segments; nothing is stored."""
    store = SegmentStore.from_book(books.load(book_id))
    draft = start_summary(store, payload.paragraphs)
    return text_stream(stream_summary(client, draft, prompts))


@router.post("/books/{book_id}/summaries")
async def api_commit_summary(
    book_id: str,
    payload: SummaryCommitRequest,
    books: BookStore = Depends(get_book_store),
) -> dict:
    book = load_book_at_version(books, book_id, payload.version)
    store = commit_summary(SegmentStore.from_book(book), payload.content)
    return book_payload(save_store(books, book, store, payload.version))
