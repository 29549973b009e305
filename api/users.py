"""
User and blocking endpoints.

Endpoints Provided:
- `GET /api/users/{id}`: Public profile.
- `POST /api/users`: Password signup. The password is stored as a bcrypt hash
  and never returned.
- `PATCH /api/users/{id}`: Profile edit, self only.
- `GET /api/users/{id}/channel`: The user's channel.
- `POST /api/users/{id}/block`, `DELETE /api/users/{id}/block/{channel_id}`:
  Maintain the user's blocked-channel list, self only. Both are idempotent.
- `GET /api/users/{id}/blocked-channels`: The blocked list. Feeds are not
  filtered server-side; clients apply this list themselves.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field

from core.auth import PasswordManager
from core.exceptions import DuplicateEntryError, NotFoundError
from core.logging_config import get_logger, log_function_call
from core.models import ChannelRead, UserCreate, UserRead, UserUpdate
from repository.base import ContentRepository

from .dependencies import ensure_owner, get_current_user_id, get_repository

logger = get_logger("api.users")
router = APIRouter(prefix="/api/users", tags=["Users"])


class SignupRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


class BlockRequest(BaseModel):
    channel_id: str = Field(min_length=1)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: str, repository: ContentRepository = Depends(get_repository)):
    user = await repository.get_user(user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@log_function_call(logger)
async def create_user(
    payload: SignupRequest, repository: ContentRepository = Depends(get_repository)
):
    if await repository.get_user_by_username(payload.username):
        raise DuplicateEntryError("Username is already taken", "username")
    if payload.email and await repository.get_user_by_email(payload.email):
        raise DuplicateEntryError("Email is already registered", "email")

    user = await repository.create_user(
        UserCreate(
            **payload.model_dump(exclude={"password"}),
            password=PasswordManager.hash_password(payload.password),
        )
    )
    logger.info(f"User {user.id} signed up")
    return user


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: str,
    updates: UserUpdate,
    current_user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    ensure_owner(user_id, current_user_id, "edit another user's profile")
    user = await repository.update_user(user_id, updates)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


@router.get("/{user_id}/channel", response_model=ChannelRead)
async def get_user_channel(
    user_id: str, repository: ContentRepository = Depends(get_repository)
):
    channel = await repository.get_channel_by_user_id(user_id)
    if channel is None:
        raise NotFoundError("Channel")
    return channel


@router.post("/{user_id}/block")
@log_function_call(logger)
async def block_channel(
    user_id: str,
    payload: BlockRequest,
    current_user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    ensure_owner(user_id, current_user_id, "block channels for another account")
    blocked = await repository.block_channel(user_id, payload.channel_id)
    return {"blocked": blocked}


@router.delete("/{user_id}/block/{channel_id}")
async def unblock_channel(
    user_id: str,
    channel_id: str,
    current_user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    ensure_owner(user_id, current_user_id, "unblock channels for another account")
    unblocked = await repository.unblock_channel(user_id, channel_id)
    return {"unblocked": unblocked}


@router.get("/{user_id}/blocked-channels", response_model=List[str])
async def get_blocked_channels(
    user_id: str, repository: ContentRepository = Depends(get_repository)
):
    return await repository.get_blocked_channels(user_id)
