"""
Student pages: week calendar with study events and absence requests.

All handlers run behind the auth middleware with `required_role=student`;
`request.state.profile` is the approved student. Store calls carry the
student's access token so row level security scopes them to own rows.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from studylog.records.errors import RecordError, RecordFetchError, ValidationError
from studylog.records.models import validate_absence_draft, validate_event_draft
from studylog.records.week import add_days, bounded_week, parse_day_param, to_iso_date, today_index

from ..components import AbsenceRequestForm, Component, EventCreateForm, WeekCalendar

student_router = APIRouter(tags=["Student"])
logger = logging.getLogger("studylog.web.student")

CALENDAR_PATH = "/student/calendar"


def _web():
    from studylog.web import main

    return main


def _repo(request: Request):
    return _web().RECORDS.bind(request.state.session.access_token)


def _calendar_url(week_iso: str, day: int) -> str:
    return f"{CALENDAR_PATH}?{urlencode({'week': week_iso, 'day': str(day)})}"


def _check_in_window(day_iso: str, today: date) -> None:
    """Events may only be added inside the weeks a student can browse."""
    window = bounded_week(None, today)
    first = to_iso_date(window.min_monday or window.monday)
    last = to_iso_date(add_days(window.max_monday or window.monday, 6))
    if not first <= day_iso <= last:
        raise ValidationError("date_out_of_range", "이 날짜에는 추가할 수 없습니다.")


async def _render_calendar(
    request: Request,
    *,
    week: Optional[str],
    day: Optional[str],
    error: Optional[str] = None,
    values: Optional[dict] = None,
    status_code: int = 200,
):
    web = _web()
    today = web.today()
    window = bounded_week(week, today)
    default_day = today_index(today) if window.is_this_week else 0
    day_index = parse_day_param(day, default_day)
    profile = request.state.profile
    csrf = web.csrf_token_for(request)

    try:
        events = await web.run_blocking(
            _repo(request).list_events, owner_id=profile.id, start=window.start_iso, end=window.end_iso
        )
    except RecordFetchError as exc:
        logger.warning("Calendar load failed: %s", exc.code)
        content = '<section class="card"><h1>캘린더</h1><p class="alert alert--error" role="alert">일정을 불러올 수 없습니다.</p></section>'
        return web.render_page(request, "캘린더", content, status_code=503)

    calendar = WeekCalendar(
        window,
        day_index,
        events,
        base_path=CALENDAR_PATH,
        csrf_token=csrf,
        today_iso=to_iso_date(today),
    )
    form = EventCreateForm(
        csrf,
        day_iso=to_iso_date(window.days[day_index]),
        week_iso=window.start_iso,
        day_index=day_index,
        error=error,
        values=values,
    )
    content = f"""
    <section class="page student-calendar">
        <h1>캘린더</h1>
        <p class="text-muted">이전 1주 / 이후 3주까지 이동할 수 있습니다.</p>
        {calendar.render()}
        <div class="card">
            <h2>일정 추가</h2>
            {form.render()}
        </div>
    </section>
    """
    return web.render_page(request, "캘린더", content, status_code=status_code)


@student_router.get("/student", response_class=HTMLResponse)
async def student_index(request: Request):
    return _web().redirect_to(request, CALENDAR_PATH)


@student_router.get(CALENDAR_PATH, response_class=HTMLResponse)
async def student_calendar(request: Request, week: str | None = None, day: str | None = None):
    return await _render_calendar(request, week=week, day=day)


@student_router.post("/student/events", response_class=HTMLResponse)
async def student_add_event(request: Request):
    """Add a study event on the posted day and go back to that day."""
    web = _web()
    form = await request.form()
    denied = web.csrf_failure(request, form)
    if denied is not None:
        return denied
    week = str(form.get("week") or "")
    day = str(form.get("day") or "")
    try:
        payload = validate_event_draft(form, day=str(form.get("date") or ""))
        _check_in_window(payload["date"], web.today())
        await web.run_blocking(_repo(request).insert_event, owner_id=request.state.profile.id, payload=payload)
    except ValidationError as exc:
        return await _render_calendar(
            request, week=week, day=day, error=str(exc), values=dict(form), status_code=400
        )
    except RecordError as exc:
        logger.warning("Event insert failed: %s", exc.code)
        return await _render_calendar(
            request, week=week, day=day, error="저장에 실패했습니다.", values=dict(form), status_code=400
        )
    return web.redirect_after_post(request, _calendar_url(week or payload["date"], parse_day_param(day)))


@student_router.post("/student/events/{event_id}/delete", response_class=HTMLResponse)
async def student_delete_event(request: Request, event_id: str):
    """Delete one of the caller's own events."""
    web = _web()
    form = await request.form()
    denied = web.csrf_failure(request, form)
    if denied is not None:
        return denied
    week = str(form.get("week") or "")
    day = str(form.get("day") or "")
    try:
        await web.run_blocking(_repo(request).delete_event, event_id=event_id, owner_id=request.state.profile.id)
    except RecordError as exc:
        logger.warning("Event delete failed: %s", exc.code)
        return await _render_calendar(request, week=week, day=day, error="삭제에 실패했습니다.", status_code=400)
    return web.redirect_after_post(request, _calendar_url(week, parse_day_param(day)))


# --- Absences -------------------------------------------------------------------

async def _render_absence(
    request: Request, *, error: Optional[str] = None, values: Optional[dict] = None, status_code: int = 200
):
    web = _web()
    try:
        items = await web.run_blocking(_repo(request).list_absences, student_id=request.state.profile.id)
    except RecordFetchError as exc:
        logger.warning("Absence list failed: %s", exc.code)
        items = None

    if items is None:
        list_html = '<p class="alert alert--error" role="alert">목록을 불러올 수 없습니다.</p>'
    elif not items:
        list_html = '<p class="text-muted">제출한 결석이 없습니다.</p>'
    else:
        rows = "".join(
            f"<tr><td>{Component.escape(a.date)}</td><td>{Component.escape(a.reason)}</td>"
            f'<td><span class="badge badge--{Component.escape(a.status)}">{Component.escape(a.status_label)}</span></td></tr>'
            for a in items
        )
        list_html = f"""
        <table class="table">
            <thead><tr><th>날짜</th><th>사유</th><th>상태</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>"""

    form = AbsenceRequestForm(web.csrf_token_for(request), error=error, values=values)
    content = f"""
    <section class="page student-absence">
        <h1>결석</h1>
        <div class="card">
            <h2>결석 제출</h2>
            {form.render()}
        </div>
        <div class="card">
            <h2>내 결석 목록</h2>
            {list_html}
        </div>
    </section>
    """
    return web.render_page(request, "결석", content, status_code=status_code)


@student_router.get("/student/absence", response_class=HTMLResponse)
async def student_absence(request: Request):
    return await _render_absence(request)


@student_router.post("/student/absence", response_class=HTMLResponse)
async def student_submit_absence(request: Request):
    """Submit an absence request; it starts as pending."""
    web = _web()
    form = await request.form()
    denied = web.csrf_failure(request, form)
    if denied is not None:
        return denied
    try:
        payload = validate_absence_draft(form)
        await web.run_blocking(_repo(request).insert_absence, student_id=request.state.profile.id, payload=payload)
    except ValidationError as exc:
        return await _render_absence(request, error=str(exc), values=dict(form), status_code=400)
    except RecordError as exc:
        logger.warning("Absence insert failed: %s", exc.code)
        return await _render_absence(request, error="제출에 실패했습니다.", values=dict(form), status_code=400)
    return web.redirect_after_post(request, "/student/absence")
