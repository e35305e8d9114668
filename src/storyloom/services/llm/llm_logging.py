# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Request/response trace of completion calls, kept for the debug endpoints."""

from __future__ import annotations

import datetime
import json
import os
import uuid
from typing import Any, Dict, List

MAX_LLM_LOGS = 100

# Global list to store LLM communication logs for the current session
llm_logs: List[Dict[str, Any]] = []


def _dump_path() -> str:
    default_path = os.path.join("data", "logs", "llm_raw.log")
    return os.getenv("STORYLOOM_LLM_DUMP_PATH") or default_path


def add_llm_log(log_entry: Dict[str, Any]) -> None:
    """Add a log entry to the global list, keeping only the last entries.

    If STORYLOOM_LLM_DUMP is set, also append the raw entry to a file.
    Re-adding an entry already in the list only re-dumps it, which is how a
    finished stream gets its full content written out.
    """
    if not any(entry is log_entry for entry in llm_logs):
        llm_logs.append(log_entry)
        if len(llm_logs) > MAX_LLM_LOGS:
            llm_logs.pop(0)

    if os.getenv("STORYLOOM_LLM_DUMP") != "1":
        return

    log_path = _dump_path()
    try:
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.write("=" * 80 + "\n")
            f.write(f"TIMESTAMP: {datetime.datetime.now().isoformat()}\n")
            f.write("-" * 80 + "\n")
            f.write(json.dumps(log_entry, indent=2, default=str) + "\n")
            f.write("=" * 80 + "\n\n")
    except OSError:
        # Dev-only feature; a failed dump must not break generation.
        pass


def create_log_entry(
    url: str, method: str, headers: Dict[str, str], body: Any, streaming: bool = False
) -> Dict[str, Any]:
    """Create a new log entry structure with credentials masked."""
    safe_body = body
    if isinstance(body, dict):
        safe_body = body.copy()
        for key in ["api_key", "secret", "password"]:
            if key in safe_body:
                safe_body[key] = "REDACTED"

    return {
        "id": str(uuid.uuid4()),
        "timestamp_start": datetime.datetime.now().isoformat(),
        "timestamp_end": None,
        "request": {
            "url": url,
            "method": method,
            "headers": {
                k: ("***" if k.lower() in ("authorization", "x-api-key") else v)
                for k, v in headers.items()
            },
            "body": safe_body,
        },
        "response": {
            "status_code": None,
            "streaming": streaming,
            "chunks": 0 if streaming else None,
            "full_content": "" if streaming else None,
            "body": None,
            "error": None,
        },
    }


def finish_log_entry(log_entry: Dict[str, Any], *, error: str | None = None) -> None:
    log_entry["timestamp_end"] = datetime.datetime.now().isoformat()
    if error is not None:
        log_entry["response"]["error"] = error
    add_llm_log(log_entry)
