"""
Freshness protocol for the cached Session/Profile pair of one browser session.

Why:
    The AccessGate decides on cached values. This module bounds how stale
    those values may get without hammering the identity provider or the
    profile store on every request.

Design:
    `ProfileCache` is an explicit state container: a frozen `CacheState`, a
    pure `reduce(state, event)` and a single `dispatch(event)` entry point.
    Observers attach with `subscribe()`. The refresh cycle (session fetch,
    then profile fetch keyed by the session's identity) is single-flight:
    callers arriving while a cycle runs await that cycle instead of starting
    another one. A `SessionChanged` event bumps the generation, so results
    of a cycle that started before the change are discarded.

Triggers:
    - initial load: `ensure_loaded()` (blocking, loading indicator on)
    - identity change: `session_changed(session)` from the provider listener
    - token refresh: `session_refreshed(session)` swaps tokens of the same
      identity without touching loading or the generation
    - foreground/focus regain: `refresh_silent()` (loading indicator off)

Failure policy:
    Session and profile fetch failures (including timeouts) are logged and
    folded into absent values. The gate then resolves to login (fail-closed).
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Optional, Set, Union

from .domain import Profile, Session
from .errors import IdentityError, ProfileFetchError, SessionFetchError
from .provider import TOKEN_REFRESHED

logger = logging.getLogger("studylog.identity_access.freshness")

SessionFetcher = Callable[[], Awaitable[Optional[Session]]]
ProfileFetcher = Callable[[Session], Awaitable[Optional[Profile]]]

DEFAULT_FETCH_TIMEOUT_SECONDS = 5.0

# A cycle that keeps going stale (session changes while it runs) is retried a
# bounded number of times per caller.
MAX_STALE_RETRIES = 3


# --- Profile lookup result ------------------------------------------------------

FOUND = "found"
NOT_FOUND = "not_found"
TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class ProfileLookup:
    """Tagged result of a profile fetch: found, not found, or transient error."""

    status: str
    profile: Optional[Profile] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, profile: Profile) -> "ProfileLookup":
        return cls(FOUND, profile=profile)

    @classmethod
    def not_found(cls) -> "ProfileLookup":
        return cls(NOT_FOUND)

    @classmethod
    def transient(cls, error: str) -> "ProfileLookup":
        return cls(TRANSIENT_ERROR, error=error)


# --- State and events -----------------------------------------------------------

@dataclass(frozen=True)
class CacheState:
    loading: bool = True
    loaded: bool = False
    session: Optional[Session] = None
    profile: Optional[Profile] = None
    generation: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SessionChanged:
    session: Optional[Session]


@dataclass(frozen=True)
class SessionRefreshed:
    """New tokens for the identity already cached; the profile stays valid."""

    session: Session


@dataclass(frozen=True)
class RefreshRequested:
    show_loading: bool


@dataclass(frozen=True)
class RefreshSucceeded:
    session: Optional[Session]
    profile: Optional[Profile]
    generation: int


@dataclass(frozen=True)
class RefreshFailed:
    stage: str  # "session" | "profile"
    session: Optional[Session]
    error: str
    generation: int


Event = Union[SessionChanged, SessionRefreshed, RefreshRequested, RefreshSucceeded, RefreshFailed]
Listener = Callable[[CacheState, Event], None]


def reduce(state: CacheState, event: Event) -> CacheState:
    """Return the next state. Pure; unknown events leave the state unchanged."""
    if isinstance(event, SessionChanged):
        if event.session is None:
            # Without a session there is no valid profile view: clear at once.
            return replace(
                state,
                session=None,
                profile=None,
                loading=False,
                loaded=True,
                generation=state.generation + 1,
                last_error=None,
            )
        return replace(state, session=event.session, loading=True, generation=state.generation + 1)

    if isinstance(event, SessionRefreshed):
        if state.session is None or state.session.user_id != event.session.user_id:
            return reduce(state, SessionChanged(event.session))
        return replace(state, session=event.session)

    if isinstance(event, RefreshRequested):
        if event.show_loading and not state.loading:
            return replace(state, loading=True)
        return state

    if isinstance(event, RefreshSucceeded):
        if event.generation != state.generation:
            return state
        return replace(
            state,
            session=event.session,
            profile=event.profile,
            loading=False,
            loaded=True,
            last_error=None,
        )

    if isinstance(event, RefreshFailed):
        if event.generation != state.generation:
            return state
        return replace(
            state,
            session=event.session if event.stage == "profile" else None,
            profile=None,
            loading=False,
            loaded=True,
            last_error=event.error,
        )

    return state


# --- Cache ----------------------------------------------------------------------

class ProfileCache:
    """Cached Session/Profile of one browser session plus its refresh discipline.

    Parameters
    ----------
    fetch_session:
        Coroutine function returning the current Session or None. Raises
        SessionFetchError on failure.
    fetch_profile:
        Coroutine function returning the Profile of a session's identity or
        None when no row exists. Raises ProfileFetchError on failure.
    timeout:
        Upper bound in seconds for each of the two network calls.
    """

    def __init__(
        self,
        fetch_session: SessionFetcher,
        fetch_profile: ProfileFetcher,
        *,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._fetch_session = fetch_session
        self._fetch_profile = fetch_profile
        self._timeout = timeout
        self._state = CacheState()
        self._listeners: list[Listener] = []
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_generation = 0
        self._scheduled: Set[asyncio.Task] = set()

    # -- state container ---------------------------------------------------------

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def session(self) -> Optional[Session]:
        return self._state.session

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def dispatch(self, event: Event) -> CacheState:
        previous = self._state
        self._state = reduce(previous, event)
        if self._state is not previous:
            for listener in list(self._listeners):
                try:
                    listener(self._state, event)
                except Exception:
                    logger.exception("Profile cache listener failed")
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- triggers ----------------------------------------------------------------

    async def ensure_loaded(self) -> CacheState:
        """Initial load: block until the first refresh cycle completed."""
        if self._state.loaded and not self._state.loading:
            return self._state
        return await self.refresh(show_loading=not self._state.loaded)

    def session_changed(self, session: Optional[Session]) -> Optional[asyncio.Task]:
        """Apply an identity change notification.

        An absent session clears the cached profile synchronously. A present
        session schedules a refresh with the loading indicator; the returned
        task resolves with the refreshed state.
        """
        self.dispatch(SessionChanged(session))
        if session is None:
            return None
        task = asyncio.ensure_future(self.refresh(show_loading=True))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    def session_refreshed(self, session: Session) -> Optional[asyncio.Task]:
        """Apply a token refresh notification.

        Same identity: only the session is swapped; loading, generation and an
        in-flight cycle are left alone. A different identity is an identity
        change and goes through `session_changed`.
        """
        current = self._state.session
        if current is None or current.user_id != session.user_id:
            return self.session_changed(session)
        self.dispatch(SessionRefreshed(session))
        return None

    async def refresh_profile(self) -> CacheState:
        return await self.refresh(show_loading=True)

    async def refresh_silent(self) -> CacheState:
        return await self.refresh(show_loading=False)

    async def refresh(self, show_loading: bool = False) -> CacheState:
        """Run (or join) a refresh cycle and return the resulting state."""
        for _ in range(MAX_STALE_RETRIES):
            task = self._inflight
            if task is None or task.done():
                task = self._start_cycle(show_loading)
            generation = self._inflight_generation
            await self._join(task)
            if generation == self._state.generation:
                return self._state
        logger.warning("Refresh kept going stale; answering without a profile")
        return replace(self._state, profile=None, loading=False)

    def close(self) -> None:
        """Cancel in-flight work and drop listeners (cache is being discarded)."""
        for task in list(self._scheduled):
            task.cancel()
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._listeners.clear()

    # -- refresh cycle -----------------------------------------------------------

    def _start_cycle(self, show_loading: bool) -> asyncio.Task:
        generation = self._state.generation
        if show_loading:
            self.dispatch(RefreshRequested(show_loading=True))
        task = asyncio.ensure_future(self._cycle(generation))
        self._inflight = task
        self._inflight_generation = generation
        return task

    async def _join(self, task: asyncio.Task) -> None:
        # Shield: one caller being cancelled must not cancel the shared cycle.
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return
            raise

    async def _cycle(self, generation: int) -> None:
        try:
            try:
                session = await asyncio.wait_for(self._fetch_session(), timeout=self._timeout)
            except (SessionFetchError, asyncio.TimeoutError) as exc:
                logger.warning("Session fetch failed: %s", _reason(exc))
                self.dispatch(RefreshFailed("session", None, _reason(exc), generation))
                return
            except Exception as exc:
                logger.exception("Unexpected session fetch error")
                self.dispatch(RefreshFailed("session", None, _reason(exc), generation))
                return

            if session is None:
                self.dispatch(RefreshSucceeded(None, None, generation))
                return

            lookup = await self._lookup_profile(session)
            if lookup.status == TRANSIENT_ERROR:
                self.dispatch(RefreshFailed("profile", session, lookup.error or "profile_fetch_failed", generation))
            else:
                self.dispatch(RefreshSucceeded(session, lookup.profile, generation))
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None

    async def _lookup_profile(self, session: Session) -> ProfileLookup:
        try:
            profile = await asyncio.wait_for(self._fetch_profile(session), timeout=self._timeout)
        except (ProfileFetchError, asyncio.TimeoutError) as exc:
            logger.warning("Profile fetch failed: %s", _reason(exc))
            return ProfileLookup.transient(_reason(exc))
        except Exception as exc:
            logger.exception("Unexpected profile fetch error")
            return ProfileLookup.transient(_reason(exc))
        if profile is None:
            logger.info("No profile row for authenticated identity")
            return ProfileLookup.not_found()
        return ProfileLookup.found(profile)


def _reason(exc: BaseException) -> str:
    if isinstance(exc, IdentityError):
        return exc.code
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    return exc.__class__.__name__


# --- Registry -------------------------------------------------------------------

class ProfileCacheRegistry:
    """One ProfileCache per server-side session id, bounded in size.

    The registry also routes identity provider notifications to the cache of
    the affected session (see `handle_session_change`).
    """

    def __init__(self, factory: Callable[[str], ProfileCache], *, max_entries: int = 10_000) -> None:
        self._factory = factory
        self._max_entries = max(1, max_entries)
        self._caches: "OrderedDict[str, ProfileCache]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._caches)

    def get(self, session_id: str) -> Optional[ProfileCache]:
        return self._caches.get(session_id)

    def get_or_create(self, session_id: str) -> ProfileCache:
        cache = self._caches.get(session_id)
        if cache is not None:
            self._caches.move_to_end(session_id)
            return cache
        cache = self._factory(session_id)
        self._caches[session_id] = cache
        while len(self._caches) > self._max_entries:
            _, evicted = self._caches.popitem(last=False)
            evicted.close()
        return cache

    def drop(self, session_id: str) -> None:
        cache = self._caches.pop(session_id, None)
        if cache is not None:
            cache.close()

    def clear(self) -> None:
        for session_id in list(self._caches):
            self.drop(session_id)

    def handle_session_change(self, event: str, session_id: str, session: Optional[Session]) -> None:
        """Identity provider listener: forward the change to the session's cache."""
        cache = self._caches.get(session_id)
        if cache is None:
            return
        logger.debug("Session change %s routed to cache", event)
        if event == TOKEN_REFRESHED and session is not None:
            cache.session_refreshed(session)
            return
        cache.session_changed(session)
        if session is None:
            self.drop(session_id)


__all__ = [
    "CacheState",
    "FOUND",
    "NOT_FOUND",
    "ProfileCache",
    "ProfileCacheRegistry",
    "ProfileLookup",
    "RefreshFailed",
    "RefreshRequested",
    "RefreshSucceeded",
    "SessionChanged",
    "SessionRefreshed",
    "TRANSIENT_ERROR",
    "reduce",
]
