"""
Upload endpoints.

Files arrive as multipart form data and go straight to object storage. The
returned URL and key are what the client sends with ``POST /api/videos``.
"""

from fastapi import APIRouter, Depends, File, UploadFile

from core.context import AppContext
from core.logging_config import get_logger, log_function_call
from providers.object_storage import ObjectStorage
from services.upload_service import store_upload

from .dependencies import get_context, get_current_user_id, get_object_storage

logger = get_logger("api.uploads")
router = APIRouter(prefix="/api", tags=["Uploads"])


@router.post("/upload/video")
@log_function_call(logger)
async def upload_video(
    video: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    context: AppContext = Depends(get_context),
):
    stored = await store_upload(
        context.object_storage,
        video.file,
        video.filename,
        video.content_type,
        "videos",
        context.settings.max_upload_size_bytes,
    )
    logger.info(f"User {user_id} uploaded video {stored['key']}")
    return {
        "message": "Video uploaded successfully",
        "video_url": stored["url"],
        "key": stored["key"],
        "storage_key": stored["key"],
    }


@router.post("/upload/thumbnail")
@log_function_call(logger)
async def upload_thumbnail(
    thumbnail: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    context: AppContext = Depends(get_context),
):
    stored = await store_upload(
        context.object_storage,
        thumbnail.file,
        thumbnail.filename,
        thumbnail.content_type,
        "thumbnails",
        context.settings.max_upload_size_bytes,
    )
    return {
        "message": "Thumbnail uploaded successfully",
        "thumbnail_url": stored["url"],
        "key": stored["key"],
    }


@router.get("/storage/status")
async def storage_status(
    context: AppContext = Depends(get_context),
    storage: ObjectStorage = Depends(get_object_storage),
):
    return {
        "configured": storage.is_configured,
        "provider": storage.provider_name,
        "cdn_enabled": storage.cdn_enabled,
        "max_upload_size": context.settings.max_upload_size_bytes,
        "max_upload_size_mb": context.settings.max_upload_size_mb,
    }
