# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Story API router aggregator.

Keeps one import path (`storyloom.api.v1.story:router`) for the narration,
summary and chapter endpoints that live in ``story_routes``.
"""

from fastapi import APIRouter

from storyloom.api.v1.story_routes.chapters import router as chapters_router
from storyloom.api.v1.story_routes.narration import router as narration_router
from storyloom.api.v1.story_routes.summaries import router as summaries_router

router = APIRouter()
router.include_router(narration_router)
router.include_router(summaries_router)
router.include_router(chapters_router)
