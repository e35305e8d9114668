# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Session logs for the debug panel: LLM traffic and story events."""

from typing import Optional

from fastapi import APIRouter

from storyloom.services.debug.debug_logging import (
    DebugLogType,
    debug_logs,
    find_debug_logs,
)
from storyloom.services.llm.llm import llm_logs

router = APIRouter(prefix="/debug", tags=["debug"])


router.add_api_route("/llm_logs", endpoint=lambda: llm_logs, methods=["GET"])


@router.delete("/llm_logs")
async def clear_llm_logs():
    """Clear the LLM communication logs."""
    llm_logs.clear()
    return {"status": "ok"}


@router.get("/logs")
async def get_debug_logs(type: Optional[DebugLogType] = None):
    return find_debug_logs(type)


@router.delete("/logs")
async def clear_debug_logs():
    debug_logs.clear()
    return {"status": "ok"}
