"""
Configuration and startup security checks for studylog.

Why: A school deployment must not start with settings that leak sessions or
tokens. This module offers a typed view of the environment plus a single
guard that enforces minimal production safety constraints without burdening
local development.

Permissions: The caller needs no special privileges. The guard only reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class Settings:
    environment: str = "dev"
    supabase_url: Optional[str] = None
    supabase_public_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    oauth_provider: str = "google"
    redirect_uri: str = "https://app.localhost/auth/callback"
    sessions_backend: str = "memory"
    session_ttl_seconds: int = 604800
    profile_fetch_timeout_seconds: float = 5.0

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)


def load_settings() -> Settings:
    url = (os.getenv("SUPABASE_URL") or "").strip() or None
    return Settings(
        environment=(os.getenv("STUDYLOG_ENV") or "dev").strip().lower(),
        supabase_url=url,
        supabase_public_url=(os.getenv("SUPABASE_PUBLIC_URL") or "").strip() or url,
        supabase_anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip() or None,
        supabase_jwt_secret=(os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None,
        oauth_provider=(os.getenv("OAUTH_PROVIDER") or "google").strip(),
        redirect_uri=(os.getenv("REDIRECT_URI") or "https://app.localhost/auth/callback").strip(),
        sessions_backend=(os.getenv("SESSIONS_BACKEND") or "memory").strip().lower(),
        session_ttl_seconds=_int_env("SESSION_TTL_SECONDS", 604800),
        profile_fetch_timeout_seconds=_float_env("PROFILE_FETCH_TIMEOUT_SECONDS", 5.0),
    )


def _must_be_https(url_value: str, var_name: str) -> None:
    if url_value and url_value.strip().lower().startswith("http://"):
        raise SystemExit(f"Refusing to start: {var_name} must use https in production (got http).")


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/stage only):
    - SUPABASE_URL and SUPABASE_ANON_KEY set and not placeholders.
    - Supabase URLs and REDIRECT_URI use https.
    - Sessions are persisted in the database (SESSIONS_BACKEND=db).
    - DATABASE_URL does not explicitly disable TLS.
    """
    env = os.getenv("STUDYLOG_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    url = (os.getenv("SUPABASE_URL") or "").strip()
    if not url:
        raise SystemExit("Refusing to start: SUPABASE_URL is unset in production.")

    anon = (os.getenv("SUPABASE_ANON_KEY") or "").strip()
    if not anon or anon.upper() in {"DUMMY_DO_NOT_USE", "CHANGE_ME"} or anon.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: SUPABASE_ANON_KEY is unset or a placeholder in production.")

    _must_be_https(url, "SUPABASE_URL")
    _must_be_https(os.getenv("SUPABASE_PUBLIC_URL", ""), "SUPABASE_PUBLIC_URL")
    _must_be_https(os.getenv("REDIRECT_URI", ""), "REDIRECT_URI")

    if (os.getenv("SESSIONS_BACKEND") or "memory").strip().lower() != "db":
        raise SystemExit("Refusing to start: SESSIONS_BACKEND=db is mandatory in production/staging.")

    dsn = os.getenv("DATABASE_URL", "")
    if not dsn:
        raise SystemExit("Refusing to start: DATABASE_URL is required for the db session store.")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
