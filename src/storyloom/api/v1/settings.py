# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""System-wide default prompts.

Saved values go to ``prompts.json`` in the config directory and the defaults
held by the app are reloaded, so the next request already sees them.
"""

from fastapi import APIRouter, Depends, Request

from storyloom.api.v1.deps import get_config, get_prompts
from storyloom.core.config import AppConfig
from storyloom.core.prompts import (
    PromptDefaults,
    load_prompt_defaults,
    save_prompt_overrides,
)
from storyloom.models.templates import PromptConfig
from storyloom.services.exceptions import PersistenceError

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/prompts", response_model=PromptConfig)
async def api_get_prompts(prompts: PromptDefaults = Depends(get_prompts)) -> PromptConfig:
    return prompts.prompt


@router.put("/prompts", response_model=PromptConfig)
async def api_put_prompts(
    payload: PromptConfig,
    request: Request,
    config: AppConfig = Depends(get_config),
) -> PromptConfig:
    try:
        save_prompt_overrides(config.prompts_path, payload)
    except OSError as e:
        raise PersistenceError(f"Failed to save prompts: {e}") from e
    request.app.state.prompts = load_prompt_defaults(config.prompts_path)
    return request.app.state.prompts.prompt
