"""
Video endpoints.

Endpoints Provided:
- `GET /api/videos`: Newest first, optional ``limit`` and exact ``category``.
- `GET /api/videos/search?q=`: Case-insensitive title/description search.
- `GET /api/videos/by-channels?channel_ids=a,b`: Feed for a set of channels,
  used for spaces and the subscriptions page.
- `GET /api/videos/stream/{key}`: Proxy to the object store with HTTP range
  support so the browser can seek.
- `GET /api/videos/{id}`: One video with its channel.
- `POST /api/videos`: Publish to the caller's channel.
- `PATCH /api/videos/{id}`, `DELETE /api/videos/{id}`: Channel owner only.
- `POST /api/videos/{id}/view`: Atomic view counter.

The fixed paths (``search``, ``by-channels``, ``stream``) are declared before
``/{video_id}`` so they are matched first.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status
from fastapi.responses import StreamingResponse

from core.exceptions import NotFoundError, ServiceUnavailableError
from core.logging_config import get_logger, log_function_call
from core.models import VideoRead, VideoUpdate, VideoWithChannel
from providers.object_storage import ObjectStorage
from repository.base import ContentRepository
from services.video_service import (
    VideoPublishRequest,
    publish_video,
    remove_video,
    require_video_owner,
)

from .dependencies import get_current_user_id, get_object_storage, get_repository

logger = get_logger("api.videos")
router = APIRouter(prefix="/api/videos", tags=["Videos"])


@router.get("", response_model=List[VideoWithChannel])
async def list_videos(
    limit: Optional[int] = Query(None, ge=1),
    category: Optional[str] = None,
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.get_videos(limit=limit, category=category)


@router.get("/search", response_model=List[VideoWithChannel])
async def search_videos(
    q: str = Query(..., min_length=1),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.search_videos(q)


@router.get("/by-channels", response_model=List[VideoWithChannel])
async def videos_by_channels(
    channel_ids: str = Query(..., min_length=1),
    repository: ContentRepository = Depends(get_repository),
):
    ids = [part.strip() for part in channel_ids.split(",") if part.strip()]
    return await repository.get_videos_by_channels(ids)


@router.get("/stream/{key:path}")
async def stream_video(
    key: str,
    range_header: Optional[str] = Header(None, alias="range"),
    storage: ObjectStorage = Depends(get_object_storage),
):
    if not storage.is_configured:
        raise ServiceUnavailableError("object_storage", "Video storage not configured")

    stream = await storage.read(key, range_header)
    headers = {"Accept-Ranges": "bytes"}
    if stream.content_length is not None:
        headers["Content-Length"] = str(stream.content_length)
    if range_header and stream.partial:
        headers["Content-Range"] = stream.content_range

    return StreamingResponse(
        stream.body,
        status_code=206 if range_header and stream.partial else 200,
        media_type=stream.content_type,
        headers=headers,
    )


@router.get("/{video_id}", response_model=VideoWithChannel)
async def get_video(video_id: str, repository: ContentRepository = Depends(get_repository)):
    video = await repository.get_video_with_channel(video_id)
    if video is None:
        raise NotFoundError("Video", video_id)
    return video


@router.post("", status_code=status.HTTP_201_CREATED)
@log_function_call(logger)
async def create_video(
    payload: VideoPublishRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    video = await publish_video(repository, user_id, payload)
    return {
        "message": "Video uploaded successfully",
        "video": await repository.get_video_with_channel(video.id),
    }


@router.patch("/{video_id}", response_model=VideoRead)
async def update_video(
    video_id: str,
    updates: VideoUpdate,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await require_video_owner(repository, video_id, user_id)
    return await repository.update_video(video_id, updates)


@router.delete("/{video_id}", status_code=status.HTTP_204_NO_CONTENT)
@log_function_call(logger)
async def delete_video(
    video_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
    storage: ObjectStorage = Depends(get_object_storage),
):
    video = await require_video_owner(repository, video_id, user_id)
    await remove_video(repository, storage, video)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{video_id}/view")
async def record_view(video_id: str, repository: ContentRepository = Depends(get_repository)):
    if not await repository.increment_view_count(video_id):
        raise NotFoundError("Video", video_id)
    return {"success": True}
