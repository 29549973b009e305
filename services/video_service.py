"""
Video Publishing Service.

Business rules that sit between the video endpoints and the Content
Repository. Endpoints stay thin; everything that needs more than one
repository call for a single video operation lives here.

Key Components:
- `VideoPublishRequest`: The request body for publishing a video. The caller
  never names a channel; the video is always published to the caller's own
  channel.
- `publish_video`: Resolves the caller's channel, derives ``is_shorts`` from
  the duration, stores the video and fans a ``new_video`` notification out to
  the channel's subscribers.
- `require_video_owner`: Loads a video and checks that the caller owns the
  channel it belongs to.
- `remove_video`: Deletes the video row (with everything that references it)
  and then the stored blob, if there is one.

Architectural Design:
- Repository Agnostic: Only `ContentRepository` methods are used, so the same
  rules hold for the memory and the relational backend.
- Best-effort Fan-out: A failed notification is logged and skipped; it never
  rolls back the published video.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from core.exceptions import (
    AuthorizationError,
    NotFoundError,
    TubeStreamError,
    ValidationError,
)
from core.logging_config import get_logger
from core.models import Channel, NotificationCreate, Video, VideoCreate
from providers.object_storage import ObjectStorage
from repository.base import ContentRepository, derive_is_shorts

logger = get_logger("services.video")

NO_CHANNEL_MESSAGE = "You need to create a channel before uploading videos"


class VideoPublishRequest(SQLModel):
    title: str = Field(min_length=1, max_length=500)
    thumbnail: str = Field(min_length=1)
    video_url: str = Field(min_length=1)
    storage_key: Optional[str] = None
    duration: str = Field(min_length=1, max_length=32)
    is_live: bool = False
    description: Optional[str] = None
    category: Optional[str] = None
    uploaded_at: Optional[datetime] = None


async def publish_video(
    repository: ContentRepository, user_id: str, payload: VideoPublishRequest
) -> Video:
    channel = await repository.get_channel_by_user_id(user_id)
    if channel is None:
        raise ValidationError("channel_id", None, NO_CHANNEL_MESSAGE)

    video = await repository.create_video(
        VideoCreate(
            **payload.model_dump(),
            channel_id=channel.id,
            is_shorts=derive_is_shorts(payload.duration),
        )
    )
    logger.info(
        "Video published",
        extra={"video_id": video.id, "channel_id": channel.id, "is_shorts": video.is_shorts},
    )

    await notify_subscribers(repository, channel, video)
    return video


async def notify_subscribers(
    repository: ContentRepository, channel: Channel, video: Video
) -> int:
    """Create a ``new_video`` notification for every subscriber of ``channel``"""
    sent = 0
    for subscription in await repository.get_subscribers(channel.id):
        try:
            await repository.create_notification(
                NotificationCreate(
                    user_id=subscription.user_id,
                    type="new_video",
                    title=f"{channel.name} uploaded a new video",
                    content=video.title,
                    video_id=video.id,
                    channel_id=channel.id,
                    thumbnail=video.thumbnail,
                )
            )
            sent += 1
        except TubeStreamError as e:
            logger.warning(
                f"Skipping notification for subscriber {subscription.user_id}: {e.message}"
            )
    return sent


async def require_video_owner(
    repository: ContentRepository, video_id: str, user_id: str
) -> Video:
    video = await repository.get_video(video_id)
    if video is None:
        raise NotFoundError("Video", video_id)
    channel = await repository.get_channel(video.channel_id)
    if channel is None or channel.user_id != user_id:
        raise AuthorizationError("Only the channel owner can modify this video")
    return video


async def remove_video(
    repository: ContentRepository, storage: ObjectStorage, video: Video
) -> bool:
    deleted = await repository.delete_video(video.id)
    if deleted and video.storage_key and storage.is_configured:
        try:
            await storage.delete(video.storage_key)
        except TubeStreamError as e:
            # The row is gone either way; an orphaned blob is only logged
            logger.warning(f"Stored object {video.storage_key} was not removed: {e.message}")
    return deleted
