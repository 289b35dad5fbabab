"""
Wiring of the external adapters (session store, GoTrue, Supabase tables).

Why:
    The app must boot without a reachable Supabase project (local dev, tests).
    Each builder returns the Supabase/psycopg adapter when configured and the
    in-memory implementation otherwise, so `main` never branches on config.

Security:
    Only the anon key is used. Every PostgREST request carries the signed-in
    user's access token so row level security decides what a user may see.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Any, Callable, Optional

from studylog.identity_access.gotrue import GoTrueClient, GoTrueConfig
from studylog.identity_access.profiles import InMemoryProfileStore
from studylog.identity_access.profiles_supabase import SupabaseProfileStore
from studylog.identity_access.stores import SessionStore
from studylog.records.repo import InMemoryRecordRepo
from studylog.records.repo_supabase import SupabaseRecordRepo

from .config import Settings

logger = logging.getLogger("studylog.web")


def under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def supabase_client_factory(url: str, anon_key: str) -> Callable[[Optional[str]], Any]:
    """Return a factory creating a PostgREST-capable client per access token."""

    def factory(access_token: Optional[str]):
        # Lazy import keeps the supabase package out of in-memory test runs.
        from supabase import create_client

        client = create_client(url, anon_key)
        if access_token:
            client.postgrest.auth(access_token)
        return client

    return factory


def build_session_store(settings: Settings):
    """Select the session store: psycopg-backed when SESSIONS_BACKEND=db."""
    if under_pytest() or settings.sessions_backend != "db":
        return SessionStore()
    try:
        from studylog.identity_access.stores_db import DBSessionStore

        return DBSessionStore()
    except RuntimeError as exc:
        logger.warning("DB session store unavailable: %s: %s", exc.__class__.__name__, str(exc))
        return SessionStore()


def build_gotrue_client(settings: Settings) -> Optional[GoTrueClient]:
    if not settings.supabase_configured:
        return None
    cfg = GoTrueConfig(
        base_url=settings.supabase_url or "",
        anon_key=settings.supabase_anon_key or "",
        redirect_uri=settings.redirect_uri,
        provider=settings.oauth_provider,
        public_base_url=settings.supabase_public_url,
    )
    return GoTrueClient(cfg)


def build_profile_store(settings: Settings):
    if not settings.supabase_configured:
        logger.info("Supabase not configured; using in-memory profile store")
        return InMemoryProfileStore()
    return SupabaseProfileStore(supabase_client_factory(settings.supabase_url or "", settings.supabase_anon_key or ""))


def build_record_repo(settings: Settings):
    if not settings.supabase_configured:
        logger.info("Supabase not configured; using in-memory record store")
        return InMemoryRecordRepo()
    return SupabaseRecordRepo(supabase_client_factory(settings.supabase_url or "", settings.supabase_anon_key or ""))
