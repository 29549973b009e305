"""
Subscription endpoints.

Subscribing twice is harmless: the existing subscription is returned and the
channel's subscriber count does not move.
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from core.exceptions import NotFoundError
from core.logging_config import get_logger, log_function_call
from core.models import Subscription
from repository.base import ContentRepository

from .dependencies import get_current_user_id, get_repository

logger = get_logger("api.subscriptions")
router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


class SubscriptionRequest(BaseModel):
    channel_id: str = Field(min_length=1)


@router.get("/{user_id}", response_model=List[Subscription])
async def list_subscriptions(
    user_id: str, repository: ContentRepository = Depends(get_repository)
):
    return await repository.get_subscriptions(user_id)


@router.get("/{user_id}/{channel_id}")
async def subscription_status(
    user_id: str, channel_id: str, repository: ContentRepository = Depends(get_repository)
):
    return {"subscribed": await repository.is_subscribed(user_id, channel_id)}


@router.post("", response_model=Subscription, status_code=status.HTTP_201_CREATED)
@log_function_call(logger)
async def subscribe(
    payload: SubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    return await repository.subscribe(user_id, payload.channel_id)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
@log_function_call(logger)
async def unsubscribe(
    payload: SubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    if not await repository.unsubscribe(user_id, payload.channel_id):
        raise NotFoundError("Subscription")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
