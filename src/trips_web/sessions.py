# src/trips_web/sessions.py

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Response
from pydantic import BaseModel, Field

from .cache import EphemeralCache

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "session_id"
PRIVILEGE_TOKEN_PREFIX = "privilegeToken_"


class SessionData(BaseModel):
    """
    Represents the data stored server-side for a user session.
    Only the session ID is stored in the browser cookie.
    """
    session_id: str
    access_token: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def short_id(session_id: str) -> str:
    return session_id[:8]


class SessionStore:
    """Session records and per-session privilege tokens held in one EphemeralCache."""

    def __init__(self, cache: EphemeralCache, ttl_seconds: int):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def create(self, access_token: str) -> SessionData:
        session = SessionData(session_id=str(uuid.uuid4()), access_token=access_token)
        self.cache.set(session.session_id, session, ttl=self.ttl_seconds)
        logger.info("Session %s started, ttl=%ds", short_id(session.session_id), self.ttl_seconds)
        return session

    def get(self, session_id: Optional[str]) -> Optional[SessionData]:
        if not session_id:
            return None
        return self.cache.get(session_id)

    def set_privilege_token(self, session_id: str, token: str) -> None:
        # One slot per session: only the most recently exchanged vehicle's token is held.
        self.cache.set(PRIVILEGE_TOKEN_PREFIX + session_id, token, ttl=self.ttl_seconds)

    def get_privilege_token(self, session_id: Optional[str]) -> Optional[str]:
        if not session_id:
            return None
        return self.cache.get(PRIVILEGE_TOKEN_PREFIX + session_id)

    def destroy(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        self.cache.delete(PRIVILEGE_TOKEN_PREFIX + session_id)
        existed = self.cache.delete(session_id)
        if existed:
            logger.info("Session %s destroyed", short_id(session_id))
        return existed


def set_session_cookie(
    response: Response,
    session_id: str,
    max_age: int,
    domain: Optional[str] = None,
    secure: bool = False,
) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        max_age=max_age,
        httponly=True,
        secure=secure,
        samesite="lax",
        domain=domain,
        path="/",
    )


def clear_session_cookie(response: Response, domain: Optional[str] = None) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, domain=domain, path="/", httponly=True, samesite="lax")
