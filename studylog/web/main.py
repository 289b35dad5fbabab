"studylog web application"
from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from datetime import date
from functools import partial
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from studylog.identity_access import gate
from studylog.identity_access.domain import LOGIN_PATH, PENDING_PATH, STUDENT, TEACHER, Profile, Session, role_home
from studylog.identity_access.freshness import ProfileCache, ProfileCacheRegistry
from studylog.identity_access.provider import IdentityProvider
from studylog.identity_access.stores import StateStore

from . import config, wiring
from .auth_utils import SESSION_COOKIE
from .components import Layout
from .routes.security import _is_same_origin, csrf_token_valid


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via STUDYLOG_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("STUDYLOG_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
config.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------

logger = logging.getLogger("studylog.web")
SETTINGS = config.load_settings()

app = FastAPI(title="studylog", description="학습 기록 · 결석 관리", version="0.1.0")

static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

NO_STORE = {"Cache-Control": "private, no-store"}
REFRESH_PATH = "/api/me/refresh"

# --- Services -------------------------------------------------------------------

STATE_STORE = StateStore()
GOTRUE = wiring.build_gotrue_client(SETTINGS)
PROFILES = wiring.build_profile_store(SETTINGS)
RECORDS = wiring.build_record_repo(SETTINGS)


async def run_blocking(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking adapter call (HTTP/DB client) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))


def _build_cache(session_id: str) -> ProfileCache:
    async def fetch_session() -> Optional[Session]:
        return await IDENTITY.get_session(session_id)

    async def fetch_profile(session: Session) -> Optional[Profile]:
        store = PROFILES.bind(session.access_token)
        return await run_blocking(store.get_profile, session.identity_id)

    return ProfileCache(fetch_session, fetch_profile, timeout=SETTINGS.profile_fetch_timeout_seconds)


CACHES = ProfileCacheRegistry(_build_cache)
IDENTITY: IdentityProvider
_unsubscribe_identity: Optional[Callable[[], None]] = None


def configure_identity(provider: IdentityProvider) -> IdentityProvider:
    """Install the identity provider and route its notifications to the caches."""
    global IDENTITY, _unsubscribe_identity
    if _unsubscribe_identity is not None:
        _unsubscribe_identity()
    CACHES.clear()
    IDENTITY = provider
    _unsubscribe_identity = provider.on_session_change(CACHES.handle_session_change)
    return provider


def set_profile_store(store) -> None:
    global PROFILES
    PROFILES = store
    CACHES.clear()


def set_record_repo(repo) -> None:
    global RECORDS
    RECORDS = repo


configure_identity(
    IdentityProvider(
        wiring.build_session_store(SETTINGS),
        GOTRUE,
        session_ttl_seconds=SETTINGS.session_ttl_seconds,
    )
)

# --- Gate -----------------------------------------------------------------------


def _is_public_path(path: str) -> bool:
    return path == LOGIN_PATH or path.startswith(("/auth/", "/static/")) or path in ("/health", "/favicon.ico")


def required_role_for(path: str) -> Optional[str]:
    for prefix, role in (("/teacher", TEACHER), ("/student", STUDENT)):
        if path == prefix or path.startswith(prefix + "/"):
            return role
    return None


def gate_for_path(path: str, session: Optional[Session], profile: Optional[Profile]) -> gate.GateDecision:
    """Gate decision for the page at `path`.

    `/pending` inverts the approval rule: it renders for signed-in users
    awaiting approval and sends approved users to their role home.
    """
    if path == PENDING_PATH:
        decision = gate.decide(session, profile)
        if decision.allowed and profile is not None:
            return gate.GateDecision(gate.ROLE_HOME, location=role_home(profile.role), role=profile.role)
        if decision.kind == gate.PENDING_APPROVAL:
            return gate.GateDecision(gate.RENDER)
        return decision
    if _is_public_path(path):
        return gate.GateDecision(gate.RENDER)
    return gate.decide(session, profile, required_role_for(path))


def gate_response(request: Request, decision: gate.GateDecision) -> Response:
    """Map a redirect decision onto HTML, HTMX or JSON semantics."""
    headers = dict(NO_STORE)
    if request.url.path.startswith("/api/"):
        if decision.kind == gate.LOGIN:
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        return JSONResponse({"error": "forbidden", "detail": decision.kind}, status_code=403, headers=headers)
    location = decision.location or LOGIN_PATH
    if "HX-Request" in request.headers:
        headers.update({"HX-Redirect": location, "Vary": "HX-Request"})
        return Response(status_code=401 if decision.kind == gate.LOGIN else 403, headers=headers)
    return RedirectResponse(url=location, status_code=302, headers=headers)


async def _load_identity(session_id: Optional[str]) -> tuple[Optional[Session], Optional[Profile]]:
    """Resolve the cached Session/Profile pair of a browser session.

    The first request of a session awaits the initial load; later requests
    read the cache. An expired access token triggers a silent refresh so
    handlers never act with a stale token.
    """
    if not session_id:
        return None, None
    cache = CACHES.get_or_create(session_id)
    state = await cache.ensure_loaded()
    if state.session is not None and state.session.is_expired(time.time()):
        state = await cache.refresh_silent()
    if state.session is None:
        CACHES.drop(session_id)
        return None, None
    return state.session, state.profile


def _user_view(session: Session, profile: Optional[Profile]) -> Optional[dict]:
    if profile is None:
        return None
    return {
        "id": profile.id,
        "name": profile.name or "",
        "role": profile.role,
        "approved": bool(profile.approved),
        "email": session.email,
    }


# --- Auth Middleware ------------------------------------------------------------

@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path) or path == REFRESH_PATH:
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE)
    session, profile = await _load_identity(sid)
    # Minimal, read-only identity context for downstream handlers.
    request.state.session_id = sid if session is not None else None
    request.state.session = session
    request.state.profile = profile
    request.state.user = _user_view(session, profile) if session is not None else None

    if path == "/api/me":
        if session is None:
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=NO_STORE)
        return await call_next(request)

    decision = gate_for_path(path, session, profile)
    if not decision.allowed:
        return gate_response(request, decision)
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if config._is_prod_like(SETTINGS.environment):
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self'; form-action 'self';"
        )
    else:
        # Local development allows inline styles/scripts for quick iteration.
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self';"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- CSRF & Rendering Helpers ---------------------------------------------------

def csrf_token_for(request: Request) -> str:
    """Per-session CSRF token stored with the server session ('' when anonymous)."""
    cached = getattr(request.state, "csrf", None)
    if cached is not None:
        return cached
    token = ""
    sid = getattr(request.state, "session_id", None)
    if sid:
        try:
            rec = IDENTITY.store.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)
            rec = None
        token = rec.csrf_token if rec is not None else ""
    request.state.csrf = token
    return token


def csrf_failure(request: Request, form: Mapping[str, Any]) -> Optional[Response]:
    """Return a 403 response when a form post fails the origin or token check."""
    if not _is_same_origin(request):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=NO_STORE)
    if not csrf_token_valid(csrf_token_for(request), form.get("csrf_token")):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=NO_STORE)
    return None


def _layout_response(
    request: Request,
    layout: Layout,
    *,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    """Render Layout with HTMX-aware semantics and return an HTMLResponse.

    Behavior:
        - Returns the fragment plus out-of-band header when `HX-Request` is
          present, otherwise the complete document.
        - Personalised pages get `Cache-Control: private, no-store` unless
          the caller overrides it.
    Permissions:
        None. The auth middleware has already applied the gate.
    """
    if request.headers.get("HX-Request"):
        body = layout.render_fragment()
    else:
        body = layout.render()
    response = HTMLResponse(content=body, status_code=status_code)
    is_personalized = bool(getattr(request.state, "user", None))
    if is_personalized and not (headers and "Cache-Control" in headers):
        response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


def render_page(
    request: Request,
    title: str,
    content: str,
    *,
    status_code: int = 200,
    show_nav: bool = True,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    layout = Layout(
        title=title,
        content=content,
        user=getattr(request.state, "user", None),
        show_nav=show_nav,
        current_path=request.url.path,
        csrf_token=csrf_token_for(request),
    )
    return _layout_response(request, layout, status_code=status_code, headers=headers)


def redirect_to(request: Request, url: str, *, status_code: int = 302) -> Response:
    """Redirect; HTMX callers get 204 + `HX-Redirect` instead."""
    if request.headers.get("HX-Request"):
        return Response(status_code=204, headers={"HX-Redirect": url, **NO_STORE})
    return RedirectResponse(url=url, status_code=status_code, headers=NO_STORE)


def redirect_after_post(request: Request, url: str) -> Response:
    """POST/redirect/GET."""
    return redirect_to(request, url, status_code=303)


def today() -> date:
    """Local calendar date used for week navigation."""
    return date.today()


def current_cache(request: Request) -> Optional[ProfileCache]:
    sid = getattr(request.state, "session_id", None)
    return CACHES.get(sid) if sid else None


# --- Pages & API ----------------------------------------------------------------

@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    profile: Profile = request.state.profile
    return redirect_to(request, role_home(profile.role))


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return JSONResponse({"status": "healthy"}, headers=NO_STORE)


@app.get("/api/me")
async def get_me(request: Request):
    """Cached `{loading, session, profile}` view of the caller (no tokens)."""
    cache = current_cache(request)
    session: Optional[Session] = request.state.session
    profile: Optional[Profile] = request.state.profile
    return JSONResponse(
        {
            "loading": bool(cache.loading) if cache is not None else False,
            "session": {
                "user_id": session.user_id,
                "email": session.email,
                "expires_at": session.expires_at,
            }
            if session is not None
            else None,
            "profile": profile.to_public_dict() if profile is not None else None,
        },
        headers=NO_STORE,
    )


async def _refresh_target(request: Request) -> str:
    path = request.query_params.get("path") or ""
    if not path:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            path = str(body.get("path") or "")
    from .routes.auth import _is_inapp_path

    return path if _is_inapp_path(path) else "/"


@app.post(REFRESH_PATH)
async def refresh_me(request: Request):
    """Silent refresh on focus/visibility regain.

    Runs the refresh without the loading indicator and answers with the gate
    decision for the page the browser is showing, so out-of-band approval or
    role changes redirect the user.
    """
    if not _is_same_origin(request):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=NO_STORE)
    path = await _refresh_target(request)
    sid = request.cookies.get(SESSION_COOKIE)
    session = profile = None
    if sid:
        cache = CACHES.get_or_create(sid)
        state = await (cache.refresh_silent() if cache.state.loaded else cache.ensure_loaded())
        session, profile = state.session, state.profile
        if session is None:
            CACHES.drop(sid)
    decision = gate_for_path(path, session, profile)
    return JSONResponse(decision.as_dict(), headers=NO_STORE)


# --- Routers --------------------------------------------------------------------

from .routes.auth import auth_router  # noqa: E402
from .routes.profile import profile_router  # noqa: E402
from .routes.student import student_router  # noqa: E402
from .routes.teacher import teacher_router  # noqa: E402

app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(student_router)
app.include_router(teacher_router)
