"""
Server-side sessions.

The browser only ever holds an opaque, signed session id; the session data
itself (the logged-in user id, OAuth state, token expiry) lives in a
`SessionStore`. The relational store persists to the ``web_sessions`` table so
sessions survive restarts and are shared between workers.

Key Components:
- `SessionStore`: load/save/delete contract. `MemorySessionStore` backs tests
  and memory mode; `SQLSessionStore` backs database mode.
- `ServerSessionMiddleware`: Resolves the cookie into ``request.session`` before
  the endpoint runs, then persists the dictionary only if the endpoint changed
  it, deletes it when it was emptied, and sets or clears the cookie to match.

Cookies are signed with `itsdangerous` using ``SESSION_SECRET``; a cookie with
a bad signature is treated as no session at all.
"""

import copy
import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from itsdangerous import BadSignature, Signer
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .database import build_session_factory
from .logging_config import get_logger
from .models import WebSession, utcnow

logger = get_logger("core.sessions")


class SessionStore(ABC):
    """Persistence contract for session dictionaries"""

    def __init__(self, ttl_seconds: int):
        self.ttl = timedelta(seconds=ttl_seconds)

    @abstractmethod
    async def load(self, sid: str) -> Optional[Dict[str, Any]]:
        """Return the session data, or None when absent or expired."""

    @abstractmethod
    async def save(self, sid: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, sid: str) -> None:
        ...


class MemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: int):
        super().__init__(ttl_seconds)
        self._sessions: Dict[str, tuple] = {}

    async def load(self, sid: str) -> Optional[Dict[str, Any]]:
        entry = self._sessions.get(sid)
        if entry is None:
            return None
        data, expire = entry
        if expire <= utcnow():
            self._sessions.pop(sid, None)
            return None
        return copy.deepcopy(data)

    async def save(self, sid: str, data: Dict[str, Any]) -> None:
        self._sessions[sid] = (copy.deepcopy(data), utcnow() + self.ttl)

    async def delete(self, sid: str) -> None:
        self._sessions.pop(sid, None)


class SQLSessionStore(SessionStore):
    def __init__(self, engine: AsyncEngine, ttl_seconds: int):
        super().__init__(ttl_seconds)
        self.session_factory = build_session_factory(engine)

    async def load(self, sid: str) -> Optional[Dict[str, Any]]:
        async with self.session_factory() as db:
            row = await db.get(WebSession, sid)
        if row is None or row.expire <= utcnow():
            return None
        return dict(row.data or {})

    async def save(self, sid: str, data: Dict[str, Any]) -> None:
        async with self.session_factory.begin() as db:
            row = await db.get(WebSession, sid)
            if row is None:
                db.add(WebSession(sid=sid, data=dict(data), expire=utcnow() + self.ttl))
            else:
                row.data = dict(data)
                row.expire = utcnow() + self.ttl

    async def delete(self, sid: str) -> None:
        async with self.session_factory.begin() as db:
            await db.execute(delete(WebSession).where(WebSession.sid == sid))

    async def purge_expired(self) -> int:
        async with self.session_factory.begin() as db:
            result = await db.execute(
                delete(WebSession).where(WebSession.expire <= utcnow())
            )
            purged = result.rowcount
        logger.info(f"Purged {purged} expired sessions")
        return purged


class ServerSessionMiddleware(BaseHTTPMiddleware):
    """Expose a server-side session as ``request.session``"""

    def __init__(
        self,
        app: ASGIApp,
        store_getter: Callable[[], SessionStore],
        secret_key: str,
        cookie_name: str = "tubestream.sid",
        max_age: int = 7 * 24 * 60 * 60,
        https_only: bool = False,
    ):
        super().__init__(app)
        self.store_getter = store_getter
        self.signer = Signer(secret_key, salt="tubestream.session")
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.https_only = https_only

    def _unsign(self, cookie: Optional[str]) -> Optional[str]:
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie).decode()
        except BadSignature:
            logger.warning("Rejected session cookie with a bad signature")
            return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        store = self.store_getter()
        sid = self._unsign(request.cookies.get(self.cookie_name))

        data: Dict[str, Any] = {}
        if sid is not None:
            loaded = await store.load(sid)
            if loaded is None:
                sid = None
            else:
                data = loaded

        snapshot = copy.deepcopy(data)
        request.scope["session"] = data

        response = await call_next(request)

        current = request.scope.get("session", {})
        if current == snapshot:
            return response

        if not current:
            if sid is not None:
                await store.delete(sid)
            response.delete_cookie(self.cookie_name, path="/")
            return response

        if sid is None:
            sid = secrets.token_urlsafe(32)
        await store.save(sid, current)
        response.set_cookie(
            self.cookie_name,
            self.signer.sign(sid).decode(),
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.https_only,
            samesite="lax",
        )
        return response
