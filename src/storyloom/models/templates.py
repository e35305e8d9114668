# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Pydantic models for templates and their prompt configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PromptConfig(BaseModel):
    """Prompt fragments of a template; ``None`` falls back to the system default."""

    model_config = ConfigDict(frozen=True)

    narrator: str | None = None
    input_tag: str | None = None
    summarizer: str | None = None
    summarizer_end_state: str | None = None


class Template(BaseModel):
    """Story premise plus prompt configuration shared by many books."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    name: str
    story_background: str = ""
    prompt: PromptConfig = PromptConfig()


class TemplateCreate(BaseModel):
    """Request body for ``POST /api/v1/templates``."""

    name: str
    story_background: str = ""
    prompt: PromptConfig = PromptConfig()


class TemplateUpdate(BaseModel):
    """Request body for ``PUT /api/v1/templates/{template_id}``."""

    name: str | None = None
    story_background: str | None = None
    prompt: PromptConfig | None = None
