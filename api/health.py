"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from config.settings import get_settings
from tools import TOOLSET_GENERATION, get_tool_names

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "healthy",
        "planningModel": settings.planning_model,
        "generationModel": settings.generation_model,
        "generationTools": get_tool_names(TOOLSET_GENERATION),
    }
