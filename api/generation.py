"""Generation bootstrap — HTTP calls that precede a generation socket.

Endpoints:
- ``POST /api/generate-syllabind``  — validate + mark generating, return the socket URL
- ``POST /api/regenerate-week``     — validate the week, return the socket URL
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from models.base import CamelModel
from models.syllabind import Syllabus, SyllabusStatus, User
from services.auth import require_user
from services.syllabind_store import SyllabindStore, get_syllabind_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


class GenerateSyllabindRequest(CamelModel):
    syllabus_id: int = Field(gt=0)


class RegenerateWeekRequest(CamelModel):
    syllabus_id: int = Field(gt=0)
    week_index: int = Field(gt=0)


class GenerationBootstrapResponse(CamelModel):
    success: bool = True
    syllabus_id: int
    week_index: int | None = None
    websocket_url: str


async def _owned_syllabus(user: User, syllabus_id: int, store: SyllabindStore) -> Syllabus:
    if not user.is_creator:
        raise HTTPException(status_code=403, detail="Creator access required")
    syllabus = await store.get_syllabus(syllabus_id)
    if syllabus is None or syllabus.creator_id != user.username:
        raise HTTPException(status_code=403, detail="Not your syllabind")
    return syllabus


@router.post("/generate-syllabind")
async def generate_syllabind(
    req: GenerateSyllabindRequest,
    user: User = Depends(require_user),
    store: SyllabindStore = Depends(get_syllabind_store),
):
    """Check preconditions, set status ``generating``, hand back the socket URL."""
    syllabus = await _owned_syllabus(user, req.syllabus_id, store)
    if not syllabus.has_complete_basics():
        raise HTTPException(status_code=400, detail="Complete basics fields before generating")
    if syllabus.status is SyllabusStatus.GENERATING:
        raise HTTPException(status_code=409, detail="Generation already in progress")

    await store.update_syllabus_status(syllabus.id, SyllabusStatus.GENERATING)
    logger.info("[Generate] %s bootstrapped generation for syllabind %d", user.username, syllabus.id)
    return GenerationBootstrapResponse(
        syllabus_id=syllabus.id,
        websocket_url=f"/ws/generate-syllabind/{syllabus.id}",
    ).to_wire()


@router.post("/regenerate-week")
async def regenerate_week(
    req: RegenerateWeekRequest,
    user: User = Depends(require_user),
    store: SyllabindStore = Depends(get_syllabind_store),
):
    syllabus = await _owned_syllabus(user, req.syllabus_id, store)
    if req.week_index > syllabus.duration_weeks:
        raise HTTPException(
            status_code=400,
            detail=f"weekIndex must be between 1 and {syllabus.duration_weeks}",
        )
    logger.info(
        "[RegenerateWeek] %s bootstrapped week %d of syllabind %d",
        user.username, req.week_index, syllabus.id,
    )
    return GenerationBootstrapResponse(
        syllabus_id=syllabus.id,
        week_index=req.week_index,
        websocket_url=f"/ws/regenerate-week/{syllabus.id}/{req.week_index}",
    ).to_wire()
