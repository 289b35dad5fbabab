"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep auth endpoints in a dedicated router. Shared state (state store,
    identity provider, GoTrue client, caches) lives in `main` and is resolved
    inside the handlers so tests can swap it per case.

Flow:
    /login -> /auth/login (PKCE + server-side state) -> GoTrue authorize ->
    /auth/callback (code exchange, access token check, server session) ->
    role home, or /pending while the profile awaits approval.
"""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from studylog.identity_access.gotrue import GoTrueClient, GoTrueError
from studylog.identity_access.tokens import TokenVerificationError, verify_access_token

from ..auth_utils import SESSION_COOKIE, cookie_opts, session_cookie_kwargs

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("studylog.web.auth")

# Allowed in-app redirect paths: no double slashes, no traversal.
INAPP_PATH_PATTERN = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")
MAX_INAPP_REDIRECT_LEN = 256

NO_STORE = {"Cache-Control": "private, no-store"}


def _web():
    from studylog.web import main

    return main


def _is_inapp_path(value: str) -> bool:
    """Return True if value is an absolute in-app path, e.g. "/", "/teacher/students".

    Rejects scheme/host values, query strings, fragments and "..".
    """
    if not value or not isinstance(value, str):
        return False
    if len(value) > MAX_INAPP_REDIRECT_LEN:
        return False
    return bool(INAPP_PATH_PATTERN.match(value))


def _error(code: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": code}, status_code=status_code, headers=NO_STORE)


def _clear_session_cookie(response: Response) -> None:
    web = _web()
    opts = cookie_opts(web.SETTINGS.environment)
    response.set_cookie(
        key=SESSION_COOKIE,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, redirect: str | None = None):
    """Public sign-in page with the OAuth button."""
    web = _web()
    target = "/auth/login"
    if redirect and _is_inapp_path(redirect):
        target = f"/auth/login?redirect={redirect}"
    unavailable = ""
    if web.GOTRUE is None:
        unavailable = '<p class="alert alert--warning" role="alert">로그인 서비스가 설정되지 않았습니다.</p>'
    content = f"""
    <section class="card auth-card">
        <h1>studylog</h1>
        <p>학교 Google 계정으로 로그인하세요. 처음 로그인하면 선생님 승인 후 이용할 수 있습니다.</p>
        {unavailable}
        <a class="button button--primary" href="{target}">Google로 로그인</a>
    </section>
    """
    return web.render_page(request, "로그인", content, show_nav=False, headers=dict(NO_STORE))


@auth_router.get("/auth/login")
async def auth_login(request: Request, redirect: str | None = None):
    """
    Start the GoTrue PKCE flow with server-side state; redirect to the provider.

    Behavior:
        - Generates code_verifier + S256 code_challenge.
        - Accepts `redirect` only as an absolute in-app path and stores it with
          the state record.
        - HTMX callers get 204 + `HX-Redirect`; others a 302.
    Permissions:
        Public.
    """
    web = _web()
    if web.GOTRUE is None:
        return _error("auth_unavailable", 503)
    code_verifier = GoTrueClient.generate_code_verifier()
    code_challenge = GoTrueClient.code_challenge_s256(code_verifier)
    safe_redirect = redirect if (isinstance(redirect, str) and _is_inapp_path(redirect)) else None
    rec = web.STATE_STORE.create(code_verifier=code_verifier, redirect=safe_redirect)
    url = web.GOTRUE.build_authorization_url(state=rec.state, code_challenge=code_challenge)
    headers = {"Cache-Control": "private, no-store", "Vary": "HX-Request"}
    if request.headers.get("HX-Request"):
        headers["HX-Redirect"] = url
        return Response(status_code=204, headers=headers)
    return RedirectResponse(url=url, status_code=302, headers=headers)


@auth_router.get("/auth/callback")
async def auth_callback(request: Request, code: str | None = None, state: str | None = None):
    """Finish the PKCE flow: exchange the code and create the server session."""
    web = _web()
    if web.GOTRUE is None:
        return _error("auth_unavailable", 503)
    if not code or not state:
        return _error("invalid_code_or_state")
    rec = web.STATE_STORE.pop_valid(state)
    if not rec:
        return _error("invalid_code_or_state")
    try:
        tokens = await web.run_blocking(
            web.GOTRUE.exchange_code_for_session, code=code, code_verifier=rec.code_verifier
        )
    except GoTrueError as exc:
        logger.warning("Code exchange failed: %s", exc.code)
        return _error("token_exchange_failed")
    try:
        claims = await web.run_blocking(
            verify_access_token,
            access_token=tokens.access_token,
            cfg=web.GOTRUE.cfg,
            jwt_secret=web.SETTINGS.supabase_jwt_secret,
        )
    except TokenVerificationError as exc:
        logger.warning("Access token verification failed: %s", exc.code)
        return _error("invalid_access_token")
    if claims.get("sub") != tokens.user_id:
        logger.warning("Access token subject does not match the session user")
        return _error("invalid_access_token")

    session = web.IDENTITY.sign_in(tokens)
    resp = RedirectResponse(url=rec.redirect or "/", status_code=302)
    resp.headers["Cache-Control"] = "private, no-store"
    resp.set_cookie(value=session.session_id, **session_cookie_kwargs(web.SETTINGS.environment, web.SETTINGS.session_ttl_seconds))
    return resp


async def _logout(request: Request) -> Response:
    web = _web()
    sid = request.cookies.get(SESSION_COOKIE)
    if sid:
        try:
            await web.IDENTITY.sign_out(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)
        web.CACHES.drop(sid)
    if request.headers.get("HX-Request"):
        resp: Response = Response(status_code=204, headers={"HX-Redirect": "/login", **NO_STORE})
    else:
        resp = RedirectResponse(url="/login", status_code=303, headers=NO_STORE)
    _clear_session_cookie(resp)
    return resp


@auth_router.post("/auth/logout")
async def auth_logout(request: Request):
    """
    Sign out: revoke at GoTrue (best effort), delete the server session,
    clear the cookie and go back to /login.

    Security:
        Same-origin check plus the session's CSRF token.
    """
    web = _web()
    form = await request.form()
    sid = request.cookies.get(SESSION_COOKIE)
    request.state.session_id = sid
    # A cookie without a live server session has nothing to protect.
    if sid and web.csrf_token_for(request):
        denied = web.csrf_failure(request, form)
        if denied is not None:
            return denied
    return await _logout(request)


@auth_router.get("/auth/logout")
async def auth_logout_get(request: Request):
    """Link-based logout; same effect as the POST form."""
    web = _web()
    if not web._is_same_origin(request):
        return _error("csrf_violation", 403)
    return await _logout(request)


@auth_router.get("/pending", response_class=HTMLResponse)
async def pending_page(request: Request):
    """Waiting screen for signed-in users whose profile is not approved yet."""
    web = _web()
    return web.render_page(request, "승인 대기", _render_pending(web.csrf_token_for(request)))


@auth_router.post("/pending")
async def pending_recheck(request: Request):
    """Refresh the cached profile (with indicator) and re-run the gate."""
    web = _web()
    form = await request.form()
    denied = web.csrf_failure(request, form)
    if denied is not None:
        return denied
    cache = web.current_cache(request)
    session = profile = None
    if cache is not None:
        state = await cache.refresh_profile()
        session, profile = state.session, state.profile
    decision = web.gate_for_path("/pending", session, profile)
    if decision.allowed:
        content = _render_pending(web.csrf_token_for(request), notice="아직 승인되지 않았습니다.")
        return web.render_page(request, "승인 대기", content)
    return web.redirect_after_post(request, decision.location or "/login")


def _render_pending(csrf_token: str, notice: str = "") -> str:
    notice_html = f'<p class="alert alert--info" role="status">{notice}</p>' if notice else ""
    return f"""
    <section class="card pending-card">
        <h1>승인 대기</h1>
        <p>선생님 승인 후 이용 가능합니다.</p>
        {notice_html}
        <form method="post" action="/pending" hx-post="/pending" hx-target="#main-content">
            <input type="hidden" name="csrf_token" value="{csrf_token}">
            <button type="submit" class="button button--primary">승인 상태 새로고침</button>
        </form>
        <form method="post" action="/auth/logout">
            <input type="hidden" name="csrf_token" value="{csrf_token}">
            <button type="submit" class="button button--ghost">로그아웃</button>
        </form>
    </section>
    """
