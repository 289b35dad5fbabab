"""
Own-profile pages (any approved role).

Edits go through `update_own_profile` with the caller's token; afterwards
the session's profile cache is refreshed so the header and the gate see the
new values on the next request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from studylog.identity_access.errors import ProfileValidationError, ProfileWriteError
from studylog.identity_access.profiles import update_own_profile

from ..components import Component, ProfileEditForm
from ..components.navigation import ROLE_LABELS

profile_router = APIRouter(tags=["Profile"])
logger = logging.getLogger("studylog.web.profile")

PROFILE_PATH = "/profile"
EDIT_PATH = "/profile/edit"


def _web():
    from studylog.web import main

    return main


def _values(profile) -> dict:
    return {
        "name": profile.name,
        "grade": profile.grade,
        "class_no": profile.class_no,
        "student_no": profile.student_no,
    }


@profile_router.get(PROFILE_PATH, response_class=HTMLResponse)
async def profile_page(request: Request):
    web = _web()
    profile = request.state.profile
    session = request.state.session
    esc = Component.escape

    def row(label: str, value) -> str:
        return f"<tr><th>{esc(label)}</th><td>{esc('-' if value in (None, '') else value)}</td></tr>"

    content = f"""
    <section class="page profile">
        <h1>내 정보</h1>
        <div class="card">
            <table class="table table--kv">
                {row("이름", profile.name)}
                {row("이메일", session.email)}
                {row("권한", ROLE_LABELS.get(profile.role, profile.role))}
                {row("기수", profile.grade)}
                {row("반", profile.class_no)}
                {row("학번", profile.student_no)}
            </table>
            <a class="button button--primary" href="{EDIT_PATH}" hx-get="{EDIT_PATH}" hx-target="#main-content" hx-push-url="true">수정</a>
        </div>
    </section>
    """
    return web.render_page(request, "내 정보", content)


def _render_edit(request: Request, values: dict, error: str | None = None, status_code: int = 200):
    web = _web()
    form = ProfileEditForm(web.csrf_token_for(request), values=values, error=error)
    content = f"""
    <section class="page profile-edit">
        <h1>내 정보 수정</h1>
        <div class="card">{form.render()}</div>
    </section>
    """
    return web.render_page(request, "내 정보 수정", content, status_code=status_code)


@profile_router.get(EDIT_PATH, response_class=HTMLResponse)
async def profile_edit_page(request: Request):
    return _render_edit(request, _values(request.state.profile))


@profile_router.post(EDIT_PATH, response_class=HTMLResponse)
async def profile_edit(request: Request):
    """Save name and school numbers; `role`/`approved` in the form are ignored."""
    web = _web()
    form = await request.form()
    denied = web.csrf_failure(request, form)
    if denied is not None:
        return denied
    values = {k: form.get(k) for k in ("name", "grade", "class_no", "student_no")}
    store = web.PROFILES.bind(request.state.session.access_token)
    try:
        await web.run_blocking(update_own_profile, store, request.state.profile.id, form)
    except ProfileValidationError as exc:
        return _render_edit(request, values, error=exc.code, status_code=400)
    except ProfileWriteError as exc:
        logger.warning("Profile update failed: %s", exc.code)
        return _render_edit(request, values, error=exc.code, status_code=400)
    cache = web.current_cache(request)
    if cache is not None:
        await cache.refresh_profile()
    return web.redirect_after_post(request, PROFILE_PATH)
