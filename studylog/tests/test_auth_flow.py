"""
Sign-in flow: /auth/login (PKCE + server state) -> /auth/callback (code
exchange, token check, server session) plus logout and the pending recheck.

GoTrue is replaced by a monkeypatched `http_post`; token verification is
stubbed at the router's import site.
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from httpx import ASGITransport

from studylog.identity_access import gotrue
from studylog.identity_access.gotrue import GoTrueClient, GoTrueConfig
from studylog.tests.utils.app_session import csrf_of, login_as, make_profile
from studylog.web import main
from studylog.web.auth_utils import SESSION_COOKIE
from studylog.web.routes import auth as auth_routes


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.fixture
def gotrue_client(monkeypatch):
    client = GoTrueClient(
        GoTrueConfig(
            base_url="http://supabase_kong:8000",
            anon_key="anon",
            redirect_uri="http://test/auth/callback",
        )
    )
    monkeypatch.setattr(main, "GOTRUE", client)
    return client


def _token_body(user_id="u1"):
    return {
        "access_token": f"access-{user_id}",
        "refresh_token": f"refresh-{user_id}",
        "expires_in": 3600,
        "user": {"id": user_id, "email": f"{user_id}@school.example"},
    }


@pytest.mark.anyio
async def test_login_page_offers_google_sign_in(gotrue_client):
    async with _client() as client:
        r = await client.get("/login?redirect=/teacher/weekly")
    assert r.status_code == 200
    assert "Google로 로그인" in r.text
    assert "/auth/login?redirect=/teacher/weekly" in r.text


@pytest.mark.anyio
async def test_auth_login_without_gotrue_is_unavailable():
    async with _client() as client:
        r = await client.get("/auth/login")
    assert r.status_code == 503
    assert r.json() == {"error": "auth_unavailable"}


@pytest.mark.anyio
async def test_auth_login_redirects_to_provider_with_pkce_and_state(gotrue_client):
    async with _client() as client:
        r = await client.get("/auth/login?redirect=/student/absence", follow_redirects=False)
    assert r.status_code == 302
    location = urlparse(r.headers["location"])
    query = parse_qs(location.query)
    assert location.path == "/auth/v1/authorize"
    assert query["code_challenge_method"] == ["s256"]
    state = parse_qs(urlparse(query["redirect_to"][0]).query)["state"][0]
    rec = main.STATE_STORE.pop_valid(state)
    assert rec is not None and rec.redirect == "/student/absence"


@pytest.mark.anyio
async def test_auth_login_drops_external_redirects(gotrue_client):
    async with _client() as client:
        r = await client.get("/auth/login?redirect=https://evil.example/", follow_redirects=False)
    query = parse_qs(urlparse(r.headers["location"]).query)
    state = parse_qs(urlparse(query["redirect_to"][0]).query)["state"][0]
    assert main.STATE_STORE.pop_valid(state).redirect is None


@pytest.mark.anyio
async def test_auth_login_htmx_uses_hx_redirect(gotrue_client):
    async with _client() as client:
        r = await client.get("/auth/login", headers={"HX-Request": "true"})
    assert r.status_code == 204
    assert r.headers["HX-Redirect"].startswith("http://supabase_kong:8000/auth/v1/authorize?")


@pytest.mark.anyio
@pytest.mark.parametrize("query", ["", "?code=c", "?code=c&state=unknown"])
async def test_callback_rejects_missing_or_unknown_state(gotrue_client, query):
    async with _client() as client:
        r = await client.get(f"/auth/callback{query}")
    assert r.status_code == 400
    assert r.json() == {"error": "invalid_code_or_state"}


@pytest.mark.anyio
async def test_callback_creates_session_and_redirects(gotrue_client, monkeypatch):
    seen = {}

    def fake_post(url, json, headers):
        seen["json"] = json
        return FakeResponse(200, _token_body("u1"))

    monkeypatch.setattr(gotrue, "http_post", fake_post)
    monkeypatch.setattr(auth_routes, "verify_access_token", lambda **kw: {"sub": "u1"})
    make_profile("u1", approved=True)
    rec = main.STATE_STORE.create(code_verifier="verifier-1", redirect="/student/absence")

    async with _client() as client:
        r = await client.get(f"/auth/callback?code=abc&state={rec.state}", follow_redirects=False)
        sid = r.headers["set-cookie"].split(";", 1)[0].split("=", 1)[1]
        client.cookies.set(SESSION_COOKIE, sid)
        me = await client.get("/api/me")

    assert r.status_code == 302
    assert r.headers["location"] == "/student/absence"
    assert seen["json"] == {"auth_code": "abc", "code_verifier": "verifier-1"}
    set_cookie = r.headers["set-cookie"].lower()
    assert "httponly" in set_cookie and "secure" in set_cookie and "samesite=lax" in set_cookie
    assert me.json()["session"]["user_id"] == "u1"
    assert "access_token" not in me.text
    # State is single use.
    assert main.STATE_STORE.pop_valid(rec.state) is None


@pytest.mark.anyio
async def test_callback_exchange_failure(gotrue_client, monkeypatch):
    monkeypatch.setattr(gotrue, "http_post", lambda url, json, headers: FakeResponse(400, {}))
    rec = main.STATE_STORE.create(code_verifier="v")
    async with _client() as client:
        r = await client.get(f"/auth/callback?code=abc&state={rec.state}")
    assert r.status_code == 400
    assert r.json() == {"error": "token_exchange_failed"}


@pytest.mark.anyio
async def test_callback_rejects_token_for_another_subject(gotrue_client, monkeypatch):
    monkeypatch.setattr(gotrue, "http_post", lambda url, json, headers: FakeResponse(200, _token_body("u1")))
    monkeypatch.setattr(auth_routes, "verify_access_token", lambda **kw: {"sub": "someone-else"})
    rec = main.STATE_STORE.create(code_verifier="v")
    async with _client() as client:
        r = await client.get(f"/auth/callback?code=abc&state={rec.state}")
    assert r.status_code == 400
    assert r.json() == {"error": "invalid_access_token"}
    assert "set-cookie" not in r.headers


@pytest.mark.anyio
async def test_logout_requires_csrf_token():
    async with _client() as client:
        sid = login_as(client, "s1")
        denied = await client.post("/auth/logout", data={})
        r = await client.post("/auth/logout", data={"csrf_token": csrf_of(sid)}, follow_redirects=False)
    assert denied.status_code == 403
    assert denied.json() == {"error": "forbidden", "detail": "csrf_violation"}
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert 'studylog_session=""' in r.headers["set-cookie"] or "max-age=0" in r.headers["set-cookie"].lower()
    assert main.IDENTITY.store.get(sid) is None
    assert main.CACHES.get(sid) is None


@pytest.mark.anyio
async def test_logout_with_dead_session_just_clears_the_cookie():
    async with _client() as client:
        client.cookies.set(SESSION_COOKIE, "expired-or-unknown")
        r = await client.post("/auth/logout", data={}, follow_redirects=False)
    assert r.status_code == 303


@pytest.mark.anyio
async def test_logout_rejects_cross_origin_posts():
    async with _client() as client:
        sid = login_as(client, "s1")
        r = await client.post(
            "/auth/logout", data={"csrf_token": csrf_of(sid)}, headers={"Origin": "https://evil.example"}
        )
    assert r.status_code == 403
    assert main.IDENTITY.store.get(sid) is not None


@pytest.mark.anyio
async def test_pending_recheck_stays_until_approved():
    async with _client() as client:
        sid = login_as(client, "s1", approved=False)
        still = await client.post("/pending", data={"csrf_token": csrf_of(sid)})

        main.PROFILES.set_approved(["s1"], True)
        approved = await client.post("/pending", data={"csrf_token": csrf_of(sid)}, follow_redirects=False)

    assert still.status_code == 200
    assert "아직 승인되지 않았습니다." in still.text
    assert approved.status_code == 303
    assert approved.headers["location"] == "/student/calendar"
