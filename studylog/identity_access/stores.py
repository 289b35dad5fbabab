"""
In-memory stores for development and tests: StateStore and SessionStore.

Why: Keep the PKCE code_verifier, the OAuth state and the GoTrue tokens on the
server. The browser only ever sees an opaque session id.

Production deployments use `stores_db.DBSessionStore` (SESSIONS_BACKEND=db).
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional
import secrets
import time

from .domain import Session


def _now() -> int:
    return int(time.time())


@dataclass
class StateRecord:
    state: str
    code_verifier: str
    redirect: Optional[str]
    expires_at: int


class StateStore:
    def __init__(self):
        self._data: Dict[str, StateRecord] = {}

    def create(self, *, code_verifier: str, ttl_seconds: int = 900, redirect: Optional[str] = None) -> StateRecord:
        state = secrets.token_urlsafe(24)
        rec = StateRecord(state=state, code_verifier=code_verifier, redirect=redirect, expires_at=_now() + ttl_seconds)
        self._data[state] = rec
        return rec

    def pop_valid(self, state: str) -> Optional[StateRecord]:
        """Consume a state exactly once; expired entries count as missing."""
        rec = self._data.pop(state, None)
        if not rec:
            return None
        if rec.expires_at < _now():
            return None
        return rec


@dataclass
class SessionRecord:
    """Server-side session: identity plus the GoTrue token pair.

    `token_expires_at` is the access token expiry; `expires_at` bounds the
    server session itself.
    """

    session_id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    token_expires_at: int
    expires_at: Optional[int] = None
    csrf_token: str = ""

    def to_session(self) -> Session:
        return Session(
            session_id=self.session_id,
            user_id=self.user_id,
            email=self.email,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.token_expires_at,
        )


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(
        self,
        *,
        user_id: str,
        email: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: int,
        ttl_seconds: int = 604800,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            user_id=user_id,
            email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            expires_at=_now() + ttl_seconds,
            csrf_token=secrets.token_urlsafe(32),
        )
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: str,
        refresh_token: str,
        token_expires_at: int,
    ) -> Optional[SessionRecord]:
        rec = self.get(session_id)
        if rec is None:
            return None
        updated = replace(
            rec,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
        )
        self._data[session_id] = updated
        return updated

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)
