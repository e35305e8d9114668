# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import os
import tempfile
from pathlib import Path

import pytest

from storyloom.services.debug.debug_logging import debug_logs
from storyloom.services.llm.llm_logging import llm_logs

# Global temporary directory for the whole test session.
# A safety net so a test that forgets to redirect never writes to the real data folder.
_SESSION_TEMP_DIR = None

_REDIRECTED = ("STORYLOOM_BOOKS_ROOT", "STORYLOOM_TEMPLATES_ROOT", "STORYLOOM_CONFIG_DIR")
_CLEARED = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_MODEL",
    "OPENAI_TIMEOUT_S",
    "STORYLOOM_LLM_DUMP",
)


@pytest.fixture(scope="session", autouse=True)
def session_temp_env():
    global _SESSION_TEMP_DIR
    _SESSION_TEMP_DIR = tempfile.TemporaryDirectory(prefix="storyloom_test_session_")
    base = Path(_SESSION_TEMP_DIR.name)

    originals = {name: os.environ.get(name) for name in _REDIRECTED + _CLEARED}

    os.environ["STORYLOOM_BOOKS_ROOT"] = str(base / "books")
    os.environ["STORYLOOM_TEMPLATES_ROOT"] = str(base / "templates")
    os.environ["STORYLOOM_CONFIG_DIR"] = str(base / "config")
    for name in _CLEARED:
        os.environ.pop(name, None)

    yield

    if _SESSION_TEMP_DIR:
        _SESSION_TEMP_DIR.cleanup()

    for name, value in originals.items():
        if value is not None:
            os.environ[name] = value
        else:
            os.environ.pop(name, None)


@pytest.fixture(autouse=True)
def clear_session_logs():
    debug_logs.clear()
    llm_logs.clear()
    yield
