"""
Tests for the authentication-enforcing middleware and the per-path gate.

Requirements:
- HTML requests without session -> 302 to /login
- JSON/API requests without session -> 401 JSON
- HTMX requests -> 401 (login) / 403 (other decisions) + HX-Redirect header
- Allowlist: /login, /auth/*, /health, /static/* are not redirected
- Unapproved users only see /pending; approved users never see it
- Role mismatches land on the user's own home view
"""
import httpx
import pytest
from httpx import ASGITransport

from studylog.identity_access.domain import STUDENT, TEACHER
from studylog.tests.utils.app_session import login_as, sign_in
from studylog.web import main
from studylog.web.auth_utils import SESSION_COOKIE


def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.mark.anyio
async def test_html_request_without_session_redirects_to_login():
    async with _client() as client:
        r = await client.get("/teacher/students", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/login"
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_json_request_without_session_returns_401():
    async with _client() as client:
        r = await client.get("/api/me")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}


@pytest.mark.anyio
async def test_htmx_request_without_session_returns_401_with_hx_redirect():
    async with _client() as client:
        r = await client.get("/student/calendar", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 401
    assert r.headers.get("HX-Redirect") == "/login"


@pytest.mark.anyio
async def test_allowlist_paths_not_redirected():
    async with _client() as client:
        r_login = await client.get("/login")
        r_health = await client.get("/health")
        r_static = await client.get("/static/css/studylog.css")
        r_missing = await client.get("/static/does-not-exist.css", follow_redirects=False)
    assert r_login.status_code == 200
    assert r_health.json() == {"status": "healthy"}
    assert r_static.status_code == 200
    assert r_missing.status_code == 404


@pytest.mark.anyio
async def test_unknown_session_cookie_is_treated_as_signed_out():
    async with _client() as client:
        client.cookies.set(SESSION_COOKIE, "forged")
        r = await client.get("/student/calendar", follow_redirects=False)
    assert r.headers.get("location") == "/login"
    assert main.CACHES.get("forged") is None


@pytest.mark.anyio
async def test_session_without_profile_row_goes_to_login():
    async with _client() as client:
        client.cookies.set(SESSION_COOKIE, sign_in("ghost"))
        r = await client.get("/student/calendar", follow_redirects=False)
    assert r.headers.get("location") == "/login"


@pytest.mark.anyio
async def test_unapproved_student_is_sent_to_pending():
    async with _client() as client:
        login_as(client, "s1", approved=False)
        r = await client.get("/student/calendar", follow_redirects=False)
        r_pending = await client.get("/pending")
    assert r.headers.get("location") == "/pending"
    assert r_pending.status_code == 200
    assert "승인 대기" in r_pending.text


@pytest.mark.anyio
async def test_approved_user_never_sees_pending():
    async with _client() as client:
        login_as(client, "t1", role=TEACHER)
        r = await client.get("/pending", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/teacher/students"


@pytest.mark.anyio
async def test_student_on_teacher_page_goes_to_student_home():
    async with _client() as client:
        login_as(client, "s1", role=STUDENT)
        r = await client.get("/teacher/absences", follow_redirects=False)
        r_htmx = await client.get("/teacher/absences", headers={"HX-Request": "true"})
    assert r.headers.get("location") == "/student/calendar"
    assert r_htmx.status_code == 403
    assert r_htmx.headers.get("HX-Redirect") == "/student/calendar"


@pytest.mark.anyio
async def test_teacher_on_student_page_goes_to_teacher_home():
    async with _client() as client:
        login_as(client, "t1", role=TEACHER)
        r = await client.get("/student/absence", follow_redirects=False)
    assert r.headers.get("location") == "/teacher/students"


@pytest.mark.anyio
async def test_root_redirects_to_role_home():
    async with _client() as client:
        login_as(client, "s1")
        r = await client.get("/", follow_redirects=False)
    assert r.headers.get("location") == "/student/calendar"


@pytest.mark.anyio
async def test_personalised_pages_are_not_cached_and_carry_security_headers():
    async with _client() as client:
        login_as(client, "s1")
        r = await client.get("/student/calendar")
    assert r.status_code == 200
    assert r.headers.get("Cache-Control") == "private, no-store"
    assert r.headers.get("X-Frame-Options") == "SAMEORIGIN"
    assert r.headers.get("X-Content-Type-Options") == "nosniff"
    assert "default-src 'self'" in r.headers.get("Content-Security-Policy", "")


@pytest.mark.anyio
async def test_htmx_navigation_returns_fragment_with_oob_header():
    async with _client() as client:
        login_as(client, "s1")
        r = await client.get("/student/calendar", headers={"HX-Request": "true"})
    assert r.status_code == 200
    assert "<html" not in r.text
    assert 'hx-swap-oob="true"' in r.text
