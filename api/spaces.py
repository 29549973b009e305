"""
Space endpoints.

A space is a user's named group of channels. Listing recomputes each space's
channels and video count from the current data, so removing a channel from a
space is reflected immediately.
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlmodel import Field

from core.exceptions import NotFoundError
from core.models import Space, SpaceBase, SpaceCreate, SpaceUpdate, SpaceWithChannels
from repository.base import ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

router = APIRouter(prefix="/api/spaces", tags=["Spaces"])


class SpaceRequest(SpaceBase):
    channel_ids: List[str] = Field(default_factory=list)


async def _owned_space(repository: ContentRepository, space_id: str, user_id: str) -> Space:
    space = await repository.get_space(space_id)
    if space is None:
        raise NotFoundError("Space", space_id)
    ensure_owner(space.user_id, user_id, "change another user's space")
    return space


@router.get("/user/{user_id}", response_model=List[SpaceWithChannels])
async def list_user_spaces(
    user_id: str, repository: ContentRepository = Depends(get_repository)
):
    return await repository.get_spaces_by_user(user_id)


@router.post("", response_model=Space, status_code=status.HTTP_201_CREATED)
async def create_space(
    payload: SpaceRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.create_space(SpaceCreate(**payload.model_dump(), user_id=user_id))


@router.patch("/{space_id}", response_model=Space)
async def update_space(
    space_id: str,
    updates: SpaceUpdate,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_space(repository, space_id, user_id)
    return await repository.update_space(space_id, updates)


@router.delete("/{space_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_space(
    space_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_space(repository, space_id, user_id)
    await repository.delete_space(space_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
