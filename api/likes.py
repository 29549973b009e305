"""
Video reaction endpoints.

``POST /api/videos/{id}/like`` toggles: the same reaction twice removes it,
the opposite reaction replaces it. The response is the resulting reaction, or
``null`` once it has been removed.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.logging_config import get_logger, log_function_call
from core.models import Like, LikeCounts, LikeType
from repository.base import ContentRepository

from .dependencies import get_current_user_id, get_repository

logger = get_logger("api.likes")
router = APIRouter(prefix="/api/videos", tags=["Likes"])


class LikeRequest(BaseModel):
    type: LikeType


@router.post("/{video_id}/like", response_model=Optional[Like])
@log_function_call(logger)
async def toggle_like(
    video_id: str,
    payload: LikeRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.toggle_like(user_id, video_id, payload.type)


@router.get("/{video_id}/likes", response_model=LikeCounts)
async def like_counts(video_id: str, repository: ContentRepository = Depends(get_repository)):
    return await repository.get_like_counts(video_id)


@router.get("/{video_id}/user-like/{user_id}", response_model=Optional[Like])
async def user_like(
    video_id: str, user_id: str, repository: ContentRepository = Depends(get_repository)
):
    return await repository.get_user_like(user_id, video_id)
