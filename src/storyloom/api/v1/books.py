# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Book CRUD, per-segment edits and export.

Every mutating request carries the book ``version`` the client last saw;
responses return the stored book with its new version.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from storyloom.api.v1.deps import get_book_store, get_template_store
from storyloom.api.v1.http_responses import ok_json
from storyloom.api.v1.story_routes.common import (
    book_payload,
    load_book_at_version,
    save_store,
)
from storyloom.models.books import (
    Book,
    BookCreate,
    BookRename,
    BookSave,
    SegmentUpdate,
)
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.story.export import export_book
from storyloom.services.story.segment_store import SegmentStore

router = APIRouter(prefix="/books", tags=["Books"])


@router.get("")
async def api_list_books(books: BookStore = Depends(get_book_store)) -> dict:
    return {
        "books": [
            {
                "book_id": b.book_id,
                "template_id": b.template_id,
                "name": b.name,
                "segments": len(b.story_segments),
                "version": b.version,
            }
            for b in books.list()
        ]
    }


@router.post("", status_code=201)
async def api_create_book(
    payload: BookCreate,
    books: BookStore = Depends(get_book_store),
    templates: TemplateStore = Depends(get_template_store),
) -> dict:
    templates.load(payload.template_id)
    return book_payload(books.create(payload.template_id, payload.name))


@router.get("/{book_id}")
async def api_get_book(book_id: str, books: BookStore = Depends(get_book_store)) -> dict:
    return book_payload(books.load(book_id))


@router.put("/{book_id}")
async def api_save_book(
    book_id: str, payload: BookSave, books: BookStore = Depends(get_book_store)
) -> dict:
    current = books.load(book_id)
    book = Book(
        book_id=book_id,
        template_id=current.template_id,
        name=payload.name,
        story_segments=tuple(payload.story_segments),
        segment_summaries=tuple(payload.segment_summaries),
        chapters=tuple(payload.chapters),
        version=payload.version,
    )
    SegmentStore.from_book(book).validate()
    return book_payload(books.save(book, expected_version=payload.version))


@router.patch("/{book_id}/name")
async def api_rename_book(
    book_id: str, payload: BookRename, books: BookStore = Depends(get_book_store)
) -> dict:
    return book_payload(books.rename(book_id, payload.name, payload.version))


@router.delete("/{book_id}")
async def api_delete_book(book_id: str, books: BookStore = Depends(get_book_store)):
    books.delete(book_id)
    return ok_json()


@router.patch("/{book_id}/segments/{segment_id}")
async def api_update_segment(
    book_id: str,
    segment_id: str,
    payload: SegmentUpdate,
    books: BookStore = Depends(get_book_store),
) -> dict:
    book = load_book_at_version(books, book_id, payload.version)
    store = SegmentStore.from_book(book)
    if payload.content is not None:
        store = store.replace_content(segment_id, payload.content)
    if payload.to_summarize is not None:
        store = store.mark_for_summary(segment_id, payload.to_summarize)
    if payload.exclude_from_prev_story is not None:
        store = store.set_excluded(segment_id, payload.exclude_from_prev_story)
    return book_payload(save_store(books, book, store, payload.version))


@router.delete("/{book_id}/segments/{segment_id}")
async def api_delete_segment(
    book_id: str,
    segment_id: str,
    version: int = Query(...),
    books: BookStore = Depends(get_book_store),
) -> dict:
    book = load_book_at_version(books, book_id, version)
    store = SegmentStore.from_book(book).remove(segment_id)
    return book_payload(save_store(books, book, store, version))


@router.get("/{book_id}/export")
async def api_export_book(
    book_id: str, books: BookStore = Depends(get_book_store)
) -> PlainTextResponse:
    export = export_book(books.load(book_id))
    return PlainTextResponse(
        export.content,
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )
