# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Session debug log shown in the book editor's debug panel.

Entries are plain dicts ``{"id", "type", "content", "timestamp"}`` kept in a
bounded in-memory list, the same way LLM traffic is kept in ``llm_logging``.
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any, Dict, List, Literal

DebugLogType = Literal["info", "warning", "error"]

MAX_DEBUG_LOGS = 200

# Global list to store debug entries for the current session
debug_logs: List[Dict[str, Any]] = []


def add_debug_log(content: str, log_type: DebugLogType = "info") -> str:
    """Record a debug entry and return its id so callers can append to it later."""
    entry = {
        "id": str(uuid.uuid4()),
        "type": log_type,
        "content": content,
        "timestamp": datetime.datetime.now().isoformat(),
    }
    debug_logs.append(entry)
    if len(debug_logs) > MAX_DEBUG_LOGS:
        debug_logs.pop(0)
    return entry["id"]


def append_debug_log(log_id: str, chunk: str) -> None:
    for entry in debug_logs:
        if entry["id"] == log_id:
            entry["content"] += chunk
            return


def find_debug_logs(log_type: DebugLogType | None = None) -> List[Dict[str, Any]]:
    if log_type is None:
        return list(debug_logs)
    return [entry for entry in debug_logs if entry["type"] == log_type]
