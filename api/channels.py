"""
Channel endpoints.

Every user owns at most one channel. Channel handles (``username``) are
unique; a taken handle is a 400, as is a second channel for the same user.
"""

from typing import List

from fastapi import APIRouter, Depends, status

from core.exceptions import DuplicateEntryError, NotFoundError
from core.logging_config import get_logger, log_function_call
from core.models import (
    ChannelBase,
    ChannelCreate,
    ChannelRead,
    ChannelUpdate,
    VideoWithChannel,
)
from repository.base import ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

logger = get_logger("api.channels")
router = APIRouter(prefix="/api/channels", tags=["Channels"])


@router.get("", response_model=List[ChannelRead])
async def list_channels(repository: ContentRepository = Depends(get_repository)):
    return await repository.get_all_channels()


@router.get("/{channel_id}", response_model=ChannelRead)
async def get_channel(
    channel_id: str, repository: ContentRepository = Depends(get_repository)
):
    channel = await repository.get_channel(channel_id)
    if channel is None:
        raise NotFoundError("Channel", channel_id)
    return channel


@router.get("/{channel_id}/videos", response_model=List[VideoWithChannel])
async def get_channel_videos(
    channel_id: str, repository: ContentRepository = Depends(get_repository)
):
    if await repository.get_channel(channel_id) is None:
        raise NotFoundError("Channel", channel_id)
    return await repository.get_videos_by_channel(channel_id)


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
@log_function_call(logger)
async def create_channel(
    payload: ChannelBase,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    if await repository.get_channel_by_user_id(user_id):
        raise DuplicateEntryError("User already has a channel", "user_id")
    if await repository.get_channel_by_username(payload.username):
        raise DuplicateEntryError("Channel handle is already taken", "username")

    channel = await repository.create_channel(
        ChannelCreate(**payload.model_dump(), user_id=user_id)
    )
    logger.info(f"Channel {channel.id} created for user {user_id}")
    return channel


@router.patch("/{channel_id}", response_model=ChannelRead)
async def update_channel(
    channel_id: str,
    updates: ChannelUpdate,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    channel = await repository.get_channel(channel_id)
    if channel is None:
        raise NotFoundError("Channel", channel_id)
    ensure_owner(channel.user_id, user_id, "edit another user's channel")

    if updates.username and updates.username != channel.username:
        if await repository.get_channel_by_username(updates.username):
            raise DuplicateEntryError("Channel handle is already taken", "username")

    return await repository.update_channel(channel_id, updates)
