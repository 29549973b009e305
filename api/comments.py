"""
Comment endpoints.

The repository pages comments flat. With ``threaded=true`` the page is grouped
into top-level comments carrying their ``replies``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from core.exceptions import NotFoundError
from core.logging_config import get_logger, log_function_call
from core.models import Comment, CommentCreate, CommentRead, CommentSort, CommentUpdate
from repository.base import DEFAULT_PAGE_SIZE, ContentRepository
from services.comment_service import build_comment_threads

from .dependencies import ensure_owner, get_current_user_id, get_repository

logger = get_logger("api.comments")
router = APIRouter(prefix="/api", tags=["Comments"])


class CommentRequest(BaseModel):
    content: str = Field(min_length=1, max_length=10000)
    parent_id: Optional[str] = None


async def _authored_comment(
    repository: ContentRepository, comment_id: str, user_id: str
) -> Comment:
    comment = await repository.get_comment(comment_id)
    if comment is None:
        raise NotFoundError("Comment", comment_id)
    ensure_owner(comment.user_id, user_id, "change another user's comment")
    return comment


@router.get("/videos/{video_id}/comments")
async def list_comments(
    video_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=200),
    offset: int = Query(0, ge=0),
    sort_by: CommentSort = "created_at",
    threaded: bool = False,
    repository: ContentRepository = Depends(get_repository),
):
    comments = await repository.get_comments_by_video(video_id, limit, offset, sort_by)
    if threaded:
        return build_comment_threads(comments)
    return [CommentRead.model_validate(comment) for comment in comments]


@router.post(
    "/videos/{video_id}/comments",
    response_model=CommentRead,
    status_code=status.HTTP_201_CREATED,
)
@log_function_call(logger)
async def create_comment(
    video_id: str,
    payload: CommentRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.create_comment(
        CommentCreate(**payload.model_dump(), video_id=video_id, user_id=user_id)
    )


@router.patch("/comments/{comment_id}", response_model=CommentRead)
async def update_comment(
    comment_id: str,
    updates: CommentUpdate,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _authored_comment(repository, comment_id, user_id)
    return await repository.update_comment(comment_id, updates)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    await _authored_comment(repository, comment_id, user_id)
    await repository.delete_comment(comment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/comments/{comment_id}/like")
async def like_comment(
    comment_id: str,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    comment = await repository.like_comment(comment_id)
    if comment is None:
        raise NotFoundError("Comment", comment_id)
    return {"success": True, "likes": comment.likes}
