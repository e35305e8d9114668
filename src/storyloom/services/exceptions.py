# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Domain exceptions raised by the story services.

Each exception carries the HTTP status the API layer should answer with, so
service code never imports FastAPI. The handler registered in ``main.py``
turns them into ``{"ok": false, "detail": ...}`` responses.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base domain exception that carries an HTTP-equivalent status code.

    All service-layer error conditions should be expressed as subclasses
    of this class.  The global exception handler registered in ``main.py``
    translates these into JSON error responses automatically.
    """

    default_status_code: int = 500

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = (
            status_code if status_code is not None else self.default_status_code
        )


class BadRequestError(ServiceError):
    """Raised when the caller provides invalid or missing input (HTTP 400)."""

    default_status_code = 400


class StoryValidationError(BadRequestError):
    """Raised when a story transition is rejected before touching the store (HTTP 400).

    Covers non-contiguous summarization selections, blank chapter fields,
    malformed end-states and segment annotations that would break an invariant.
    """


class NotFoundError(ServiceError):
    """Raised when a requested resource does not exist (HTTP 404)."""

    default_status_code = 404


class ConflictError(ServiceError):
    """Raised when a save carries a stale book version (HTTP 409)."""

    default_status_code = 409


class ConfigurationError(ServiceError):
    """Raised when required configuration is missing or invalid (HTTP 400)."""

    default_status_code = 400


class PersistenceError(ServiceError):
    """Raised when a read/write operation on the file system fails (HTTP 500)."""

    default_status_code = 500
