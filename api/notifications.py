"""
Notification endpoints.

Notifications are private: every route works on the caller's own inbox.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from core.exceptions import NotFoundError
from core.models import Notification
from repository.base import DEFAULT_PAGE_SIZE, ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", response_model=List[Notification])
async def list_notifications(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=200),
    unread_only: bool = False,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.get_notifications(user_id, limit, unread_only)


@router.get("/unread-count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return {"count": await repository.get_unread_notification_count(user_id)}


@router.patch("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    notification = await repository.get_notification(notification_id)
    if notification is None:
        raise NotFoundError("Notification", notification_id)
    ensure_owner(notification.user_id, user_id, "read another user's notifications")
    return await repository.mark_notification_read(notification_id)


@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return {"updated": await repository.mark_all_notifications_read(user_id)}
