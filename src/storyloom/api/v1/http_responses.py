# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Small response helpers shared by the routers."""

from typing import AsyncIterator

from fastapi.responses import JSONResponse, StreamingResponse


def ok_json(status_code: int = 200, **extra: object) -> JSONResponse:
    body: dict[str, object] = {"ok": True}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def text_stream(
    chunks: AsyncIterator[str], headers: dict[str, str] | None = None
) -> StreamingResponse:
    """Stream plain text chunks in the order they are produced."""
    return StreamingResponse(chunks, media_type="text/plain", headers=headers)
