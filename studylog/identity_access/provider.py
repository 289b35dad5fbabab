"""
Identity Provider port backed by the server-side session store and GoTrue.

`get_session(session_id)` returns the current Session of a browser session and
transparently refreshes an expiring access token. Listeners registered with
`on_session_change` are notified on sign in, sign out and token refresh with
`(event, session_id, session_or_none)`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Callable, List, Optional

from .domain import Session
from .errors import SessionFetchError
from .gotrue import GoTrueClient, GoTrueError, TokenSet

logger = logging.getLogger("studylog.identity_access")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"

SessionListener = Callable[[str, str, Optional[Session]], None]

# Refresh access tokens this many seconds before they expire.
DEFAULT_REFRESH_LEEWAY_SECONDS = 60


class IdentityProvider:
    def __init__(
        self,
        store,
        gotrue: GoTrueClient | None = None,
        *,
        session_ttl_seconds: int = 604800,
        refresh_leeway: int = DEFAULT_REFRESH_LEEWAY_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.gotrue = gotrue
        self._ttl = session_ttl_seconds
        self._leeway = refresh_leeway
        self._clock = clock
        self._listeners: List[SessionListener] = []

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, session_id: str, session: Optional[Session]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session_id, session)
            except Exception:
                logger.exception("Session change listener failed (%s)", event)

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Return the Session for `session_id` or None.

        Raises SessionFetchError when the store or the token refresh fails for
        reasons other than an invalid refresh token.
        """
        try:
            rec = self.store.get(session_id)
        except Exception as exc:
            raise SessionFetchError("session_store_unavailable") from exc
        if rec is None:
            return None
        session = rec.to_session()
        if not session.is_expired(self._clock(), self._leeway):
            return session
        if self.gotrue is None or not rec.refresh_token:
            return None

        loop = asyncio.get_running_loop()
        try:
            tokens: TokenSet = await loop.run_in_executor(
                None, partial(self.gotrue.refresh_session, refresh_token=rec.refresh_token)
            )
        except GoTrueError as exc:
            if exc.code == "invalid_grant":
                logger.info("Refresh token rejected; ending server session")
                self.store.delete(session_id)
                return None
            raise SessionFetchError("token_refresh_failed") from exc

        updated = self.store.update_tokens(
            session_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
        )
        if updated is None:
            return None
        session = updated.to_session()
        self._emit(TOKEN_REFRESHED, session_id, session)
        return session

    def sign_in(self, tokens: TokenSet) -> Session:
        """Create a server session for freshly exchanged tokens."""
        rec = self.store.create(
            user_id=tokens.user_id,
            email=tokens.email,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            ttl_seconds=self._ttl,
        )
        session = rec.to_session()
        self._emit(SIGNED_IN, rec.session_id, session)
        return session

    async def sign_out(self, session_id: str) -> None:
        """Revoke at GoTrue (best effort) and delete the server session."""
        rec = self.store.get(session_id)
        if rec is not None and self.gotrue is not None:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, partial(self.gotrue.sign_out, access_token=rec.access_token))
            except Exception as exc:
                logger.warning("GoTrue logout failed: %s", exc.__class__.__name__)
        self.store.delete(session_id)
        self._emit(SIGNED_OUT, session_id, None)


__all__ = ["IdentityProvider", "SIGNED_IN", "SIGNED_OUT", "TOKEN_REFRESHED"]
