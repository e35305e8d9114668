# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Main application entry point for the StoryLoom API server.

``create_app`` resolves the configuration once, builds the stores and prompt
defaults, keeps them on ``app.state`` and registers the routers and the
global error handler.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storyloom.api.v1.books import router as books_router
from storyloom.api.v1.debug import router as debug_router
from storyloom.api.v1.settings import router as settings_router
from storyloom.api.v1.story import router as story_router
from storyloom.api.v1.templates import router as templates_router
from storyloom.core.config import AppConfig, load_app_config
from storyloom.core.prompts import load_prompt_defaults
from storyloom.services.books.book_store import BookStore
from storyloom.services.books.template_store import TemplateStore
from storyloom.services.exceptions import ServiceError

API_ROUTERS = (
    templates_router,
    settings_router,
    books_router,
    story_router,
    debug_router,
)


async def service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "detail": exc.detail},
    )


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create the FastAPI app.

    Also used as the uvicorn factory in reload mode, where every reload
    subprocess builds its own app from the environment.
    """
    config = config or load_app_config()

    app = FastAPI(title="StoryLoom")
    app.state.config = config
    app.state.book_store = BookStore(config.books_root)
    app.state.template_store = TemplateStore(config.templates_root)
    app.state.prompts = load_prompt_defaults(config.prompts_path)

    # Streaming responses announce the next book version in a header.
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Book-Version", "Content-Disposition"],
    )

    api = APIRouter(prefix="/api/v1")
    for router in API_ROUTERS:
        api.include_router(router)
    api.add_api_route("/health", endpoint=lambda: {"status": "ok"}, methods=["GET"])
    app.include_router(api)

    app.add_exception_handler(ServiceError, service_error_handler)
    return app


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storyloom",
        description="Serve the StoryLoom story-writing API",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding the books/ and templates/ folders",
    )
    parser.add_argument(
        "--reload", action="store_true", help="Restart on code changes"
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="Uvicorn log level",
    )
    parser.add_argument(
        "--llm-dump",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Append raw LLM exchanges to a log file (default: data/logs/llm_raw.log)",
    )
    return parser


def _apply_cli_environment(args: argparse.Namespace) -> None:
    """Expose CLI choices as environment so reload subprocesses see them too."""
    if args.data_dir:
        data_dir = Path(args.data_dir)
        os.environ["STORYLOOM_BOOKS_ROOT"] = str(data_dir / "books")
        os.environ["STORYLOOM_TEMPLATES_ROOT"] = str(data_dir / "templates")
    if args.llm_dump is not None:
        os.environ["STORYLOOM_LLM_DUMP"] = "1"
        if args.llm_dump:
            os.environ["STORYLOOM_LLM_DUMP_PATH"] = args.llm_dump


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entrypoint.

    Examples:
      storyloom --port 8080
      storyloom --data-dir ./my-books --llm-dump
    """
    args = build_arg_parser().parse_args(argv)
    _apply_cli_environment(args)

    import uvicorn

    uvicorn.run(
        "storyloom.main:create_app" if args.reload else create_app(),
        host=args.host,
        port=args.port,
        reload=args.reload,
        factory=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
