# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""JSON-file persistence for templates (last write wins, no versions)."""

from __future__ import annotations

import threading
from pathlib import Path

from storyloom.models.templates import Template, TemplateCreate, TemplateUpdate
from storyloom.services.books.book_store import (
    document_path,
    new_document_id,
    read_document,
    write_document,
)
from storyloom.services.exceptions import NotFoundError, PersistenceError


class TemplateStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, template_id: str) -> Path:
        return document_path(self.root, template_id)

    def _write(self, template: Template) -> None:
        with self._lock:
            write_document(
                self._path(template.template_id), template.model_dump(mode="json")
            )

    def load(self, template_id: str) -> Template:
        return Template.model_validate(
            read_document(self._path(template_id), "template")
        )

    def list(self) -> list[Template]:
        if not self.root.exists():
            return []
        templates = [self.load(p.stem) for p in sorted(self.root.glob("*.json"))]
        return sorted(templates, key=lambda t: (t.name.lower(), t.template_id))

    def create(self, payload: TemplateCreate) -> Template:
        template = Template(template_id=new_document_id(), **payload.model_dump())
        self._write(template)
        return template

    def update(self, template_id: str, payload: TemplateUpdate) -> Template:
        current = self.load(template_id)
        changes = {k: v for k, v in payload.model_dump().items() if v is not None}
        if payload.prompt is not None:
            changes["prompt"] = payload.prompt
        updated = current.model_copy(update=changes)
        self._write(updated)
        return updated

    def delete(self, template_id: str) -> None:
        path = self._path(template_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                raise NotFoundError(f"Template {template_id} not found")
            except OSError as e:
                raise PersistenceError(
                    f"Failed to delete template {template_id}: {e}"
                ) from e
