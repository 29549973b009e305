"""
Playlist endpoints.

Every write is restricted to the playlist's owner. Adding a video that is
already on the playlist returns the existing entry.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from core.exceptions import NotFoundError
from core.logging_config import get_logger
from core.models import (
    Playlist,
    PlaylistBase,
    PlaylistCreate,
    PlaylistUpdate,
    PlaylistVideo,
    PlaylistVideoCreate,
)
from repository.base import ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

logger = get_logger("api.playlists")
router = APIRouter(prefix="/api/playlists", tags=["Playlists"])


class PlaylistEntryRequest(BaseModel):
    video_id: str = Field(min_length=1)
    position: Optional[int] = Field(default=None, ge=0)


async def _owned_playlist(
    repository: ContentRepository, playlist_id: str, user_id: str
) -> Playlist:
    playlist = await repository.get_playlist(playlist_id)
    if playlist is None:
        raise NotFoundError("Playlist", playlist_id)
    ensure_owner(playlist.user_id, user_id, "change another user's playlist")
    return playlist


@router.post("", response_model=Playlist, status_code=status.HTTP_201_CREATED)
async def create_playlist(
    payload: PlaylistBase,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.create_playlist(
        PlaylistCreate(**payload.model_dump(), user_id=user_id)
    )


@router.get("/{user_id}", response_model=List[Playlist])
async def list_playlists(user_id: str, repository: ContentRepository = Depends(get_repository)):
    return await repository.get_playlists_by_user(user_id)


@router.get("/{playlist_id}/videos", response_model=List[PlaylistVideo])
async def list_playlist_videos(
    playlist_id: str, repository: ContentRepository = Depends(get_repository)
):
    if await repository.get_playlist(playlist_id) is None:
        raise NotFoundError("Playlist", playlist_id)
    return await repository.get_playlist_videos(playlist_id)


@router.patch("/{playlist_id}", response_model=Playlist)
async def update_playlist(
    playlist_id: str,
    updates: PlaylistUpdate,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_playlist(repository, playlist_id, user_id)
    return await repository.update_playlist(playlist_id, updates)


@router.delete("/{playlist_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_playlist(
    playlist_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_playlist(repository, playlist_id, user_id)
    await repository.delete_playlist(playlist_id)
    logger.info(f"Playlist {playlist_id} deleted by {user_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{playlist_id}/videos",
    response_model=PlaylistVideo,
    status_code=status.HTTP_201_CREATED,
)
async def add_playlist_video(
    playlist_id: str,
    payload: PlaylistEntryRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_playlist(repository, playlist_id, user_id)
    return await repository.add_video_to_playlist(
        PlaylistVideoCreate(playlist_id=playlist_id, **payload.model_dump())
    )


@router.delete("/{playlist_id}/videos/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_playlist_video(
    playlist_id: str,
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _owned_playlist(repository, playlist_id, user_id)
    if not await repository.remove_video_from_playlist(playlist_id, video_id):
        raise NotFoundError("Playlist entry", video_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
