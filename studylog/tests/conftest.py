"""
Pytest configuration for studylog tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test a clean set of in-memory adapters behind `studylog.web.main`.
"""
import os

import pytest

# Keep the app in dev mode and away from real Supabase/Postgres during tests.
os.environ["STUDYLOG_ENV"] = "dev"
for _var in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_JWT_SECRET", "DATABASE_URL", "STUDYLOG_TRUST_PROXY"):
    os.environ.pop(_var, None)
os.environ["SESSIONS_BACKEND"] = "memory"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_app_state():
    """
    Install fresh in-memory adapters on `main` before each pytest case.

    Why:
        Auth and page tests share module-level singletons (state store,
        identity provider, profile/record stores, profile caches); without a
        reset, sessions and rows leak across tests.
    """
    from studylog.identity_access.profiles import InMemoryProfileStore
    from studylog.identity_access.provider import IdentityProvider
    from studylog.identity_access.stores import SessionStore, StateStore
    from studylog.records.repo import InMemoryRecordRepo
    from studylog.web import main

    main.STATE_STORE = StateStore()
    main.GOTRUE = None
    main.configure_identity(IdentityProvider(SessionStore(), None))
    main.set_profile_store(InMemoryProfileStore())
    main.set_record_repo(InMemoryRecordRepo())
    yield
    main.CACHES.clear()
