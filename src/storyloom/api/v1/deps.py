# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""FastAPI dependencies resolving the collaborators wired in ``create_app``.

Everything comes from ``app.state``; tests swap the completion client with
``app.dependency_overrides[get_completion_client]``.
"""

from fastapi import Request

from storyloom.core.config import DEFAULT_MAX_STREAM_S, AppConfig
from storyloom.core.prompts import PromptDefaults
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.llm.llm import CompletionBackend, CompletionClient


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_book_store(request: Request) -> BookStore:
    return request.app.state.book_store


def get_template_store(request: Request) -> TemplateStore:
    return request.app.state.template_store


def get_prompts(request: Request) -> PromptDefaults:
    return request.app.state.prompts


def get_completion_client(request: Request) -> CompletionBackend:
    return CompletionClient.from_config(request.app.state.config.machine)


def get_max_stream_s(request: Request) -> float:
    llm = request.app.state.config.llm
    return llm.max_stream_s if llm is not None else DEFAULT_MAX_STREAM_S
