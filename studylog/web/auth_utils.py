"""
Shared authentication utilities.

Why:
    The session cookie and the OAuth state cookie are written from both the
    main app and the auth router. One helper keeps their flags consistent.
"""

from __future__ import annotations

SESSION_COOKIE = "studylog_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # top-level OAuth redirects must still carry the cookie
    """
    return {"secure": True, "samesite": "lax"}


def session_cookie_kwargs(environment: str, max_age: int) -> dict:
    opts = cookie_opts(environment)
    return {
        "key": SESSION_COOKIE,
        "httponly": True,
        "secure": opts["secure"],
        "samesite": opts["samesite"],
        "path": "/",
        "max_age": max_age,
    }
