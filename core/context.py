"""
Application context.

Everything the request handlers need is built once at startup and carried on
``app.state.context``: settings, the Content Repository, the session store,
the authentication strategy and the object storage. Nothing is a module-level
singleton, so tests can build as many isolated applications as they like.

Key Components:
- `AppContext`: The container, with `startup` and `shutdown` hooks that the
  application lifespan calls.
- `build_context`: Chooses the memory or relational backend from
  ``STORAGE_BACKEND`` and wires the collaborators that depend on it.
"""

from dataclasses import dataclass
from typing import Optional

from providers.object_storage import (
    InMemoryObjectStorage,
    ObjectStorage,
    S3ObjectStorage,
)
from repository.base import ContentRepository
from repository.memory import MemoryRepository
from repository.sql import SQLRepository

from .auth import AuthStrategy, select_auth_strategy
from .config import Settings
from .database import build_engine, mask_database_url
from .logging_config import get_logger
from .sessions import MemorySessionStore, SessionStore, SQLSessionStore

logger = get_logger("core.context")


@dataclass
class AppContext:
    settings: Settings
    repository: ContentRepository
    sessions: SessionStore
    auth: AuthStrategy
    object_storage: ObjectStorage

    async def startup(self):
        await self.repository.initialize()
        if isinstance(self.sessions, SQLSessionStore):
            await self.sessions.purge_expired()
        logger.info(
            "Application context ready",
            extra={
                "repository": type(self.repository).__name__,
                "auth_strategy": self.auth.name,
                "object_storage": self.object_storage.provider_name,
            },
        )

    async def shutdown(self):
        await self.repository.close()
        logger.info("Application context closed")


def build_context(
    settings: Settings,
    object_storage: Optional[ObjectStorage] = None,
    http_session_factory=None,
) -> AppContext:
    """Wire the collaborators for ``settings``"""
    if settings.storage_backend == "memory":
        repository: ContentRepository = MemoryRepository()
        sessions: SessionStore = MemorySessionStore(settings.session_ttl_seconds)
        storage = object_storage or InMemoryObjectStorage()
        logger.info("Using in-memory storage backend")
    elif settings.storage_backend == "database":
        engine = build_engine(settings.database_url)
        repository = SQLRepository(engine)
        sessions = SQLSessionStore(engine, settings.session_ttl_seconds)
        storage = object_storage or S3ObjectStorage(settings)
        logger.info(
            f"Using database storage backend at {mask_database_url(settings.database_url)}"
        )
    else:
        raise ValueError(
            f"Unknown STORAGE_BACKEND '{settings.storage_backend}', "
            "expected 'memory' or 'database'"
        )

    return AppContext(
        settings=settings,
        repository=repository,
        sessions=sessions,
        auth=select_auth_strategy(settings, repository, http_session_factory),
        object_storage=storage,
    )
