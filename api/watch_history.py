"""
Watch history endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from core.exceptions import NotFoundError
from core.models import WatchHistory, WatchHistoryCreate
from repository.base import DEFAULT_PAGE_SIZE, ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

router = APIRouter(prefix="/api/watch-history", tags=["Watch History"])


class WatchRequest(BaseModel):
    video_id: str = Field(min_length=1)
    watch_duration: int = Field(default=0, ge=0)


@router.post("", response_model=WatchHistory, status_code=status.HTTP_201_CREATED)
async def record_watch(
    payload: WatchRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.add_to_watch_history(
        WatchHistoryCreate(**payload.model_dump(exclude_none=True), user_id=user_id)
    )


@router.get("/{user_id}", response_model=List[WatchHistory])
async def get_watch_history(
    user_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=500),
    offset: int = Query(0, ge=0),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.get_watch_history(user_id, limit, offset)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_watch_history(
    user_id: str,
    current_user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    ensure_owner(user_id, current_user_id, "clear another user's watch history")
    if not await repository.clear_watch_history(user_id):
        raise NotFoundError("Watch history")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
