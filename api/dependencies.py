"""
Request-scoped dependencies.

Every collaborator is read from the application context stored on
``app.state.context``; route handlers never import a concrete repository,
storage or auth class.
"""

from typing import Optional

from fastapi import Depends, Request

from core.auth import AuthStrategy, require_identity
from core.context import AppContext
from core.exceptions import AuthorizationError
from providers.object_storage import ObjectStorage
from repository.base import ContentRepository


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_repository(context: AppContext = Depends(get_context)) -> ContentRepository:
    return context.repository


def get_object_storage(context: AppContext = Depends(get_context)) -> ObjectStorage:
    return context.object_storage


def get_auth_strategy(context: AppContext = Depends(get_context)) -> AuthStrategy:
    return context.auth


async def get_optional_user_id(
    request: Request, auth: AuthStrategy = Depends(get_auth_strategy)
) -> Optional[str]:
    return await auth.resolve_identity(request)


async def get_current_user_id(
    user_id: Optional[str] = Depends(get_optional_user_id),
) -> str:
    """Authenticated caller, 401 otherwise"""
    return require_identity(user_id)


def ensure_owner(owner_id: str, user_id: str, action: str = "modify this resource"):
    if owner_id != user_id:
        raise AuthorizationError(f"Not allowed to {action}")
