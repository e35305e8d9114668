# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

from fastapi import APIRouter, Depends

from storyloom.api.v1.deps import get_prompts, get_template_store
from storyloom.api.v1.http_responses import ok_json
from storyloom.core.prompts import PromptDefaults, merged_template
from storyloom.models.templates import Template, TemplateCreate, TemplateUpdate
from storyloom.services.books.template_store import TemplateStore

router = APIRouter(prefix="/templates", tags=["Templates"])


@router.get("")
async def api_list_templates(
    templates: TemplateStore = Depends(get_template_store),
) -> dict:
    return {"templates": [t.model_dump(mode="json") for t in templates.list()]}


@router.post("", status_code=201, response_model=Template)
async def api_create_template(
    payload: TemplateCreate, templates: TemplateStore = Depends(get_template_store)
) -> Template:
    return templates.create(payload)


@router.get("/{template_id}", response_model=Template)
async def api_get_template(
    template_id: str, templates: TemplateStore = Depends(get_template_store)
) -> Template:
    return templates.load(template_id)


@router.get("/{template_id}/merged", response_model=Template)
async def api_get_merged_template(
    template_id: str,
    templates: TemplateStore = Depends(get_template_store),
    prompts: PromptDefaults = Depends(get_prompts),
) -> Template:
    """The template with every blank prompt field filled from the defaults."""
    return merged_template(templates.load(template_id), prompts)


@router.put("/{template_id}", response_model=Template)
async def api_update_template(
    template_id: str,
    payload: TemplateUpdate,
    templates: TemplateStore = Depends(get_template_store),
) -> Template:
    return templates.update(template_id, payload)


@router.delete("/{template_id}")
async def api_delete_template(
    template_id: str, templates: TemplateStore = Depends(get_template_store)
):
    templates.delete(template_id)
    return ok_json()
