"""
Teacher pages: approvals, student and teacher lists, absences, per-student
calendar and the weekly audit.

Every handler runs behind the auth middleware with `required_role=teacher`.
Writes go through the profile writers / record store bound to the teacher's
access token; the database policies decide what a teacher may change.
Failures re-render the page with an inline message and leave data unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from studylog.identity_access import profiles as writers
from studylog.identity_access.domain import STUDENT, TEACHER, Profile
from studylog.identity_access.errors import IdentityError
from studylog.records import roster
from studylog.records.errors import RecordError
from studylog.records.models import ABSENCE_STATUSES, STATUS_LABELS, validate_absence_status
from studylog.records.week import (
    SORT_BASIC,
    SORT_CAREER,
    SORT_TOTAL,
    format_decimal_hours,
    format_minutes,
    open_week,
    parse_day_param,
    sort_weekly_rows,
    to_iso_date,
    today_index,
    weekly_rows,
)

from ..components import Component, WeekCalendar
from .auth import _is_inapp_path

teacher_router = APIRouter(tags=["Teacher"])
logger = logging.getLogger("studylog.web.teacher")

esc = Component.escape

ERROR_MESSAGES = {
    "profile_not_updated": "변경되지 않았습니다. 목록을 새로고침한 뒤 다시 시도하세요.",
    "cannot_revoke_self": "자기 자신의 권한은 박탈할 수 없습니다.",
    "invalid_role": "권한 값이 올바르지 않습니다.",
    "invalid_status": "상태 값이 올바르지 않습니다.",
    "absence_not_found": "결석 항목을 찾을 수 없습니다.",
}


def _web():
    from studylog.web import main

    return main


def _token(request: Request) -> str:
    return request.state.session.access_token


def _profiles(request: Request):
    return _web().PROFILES.bind(_token(request))


def _records(request: Request):
    return _web().RECORDS.bind(_token(request))


def _message(code: str) -> str:
    return ERROR_MESSAGES.get(code, "처리에 실패했습니다.")


def _asc(params: Mapping[str, str], default: bool) -> bool:
    raw = (params.get("dir") or "").lower()
    if raw in ("asc", "desc"):
        return raw == "asc"
    return default


def _safe_next(value: Any, default: str) -> str:
    """In-app path (optionally with query) to return to after a write."""
    text = str(value or "")
    path, _, _query = text.partition("?")
    return text if _is_inapp_path(path) and "#" not in text else default


def _params_of(url: str) -> Dict[str, str]:
    return dict(parse_qsl(url.partition("?")[2]))


def _alert(message: Optional[str]) -> str:
    return f'<p class="alert alert--error" role="alert">{esc(message)}</p>' if message else ""


def _hidden(name: str, value: Any) -> str:
    return f'<input type="hidden" name="{esc(name)}" value="{esc(value)}">'


def _action_form(action: str, label: str, csrf: str, next_url: str, *, variant: str = "ghost", confirm: str = "", extra: str = "") -> str:
    confirm_attr = f' hx-confirm="{esc(confirm)}"' if confirm else ""
    return (
        f'<form method="post" action="{esc(action)}" class="inline-form" '
        f'hx-post="{esc(action)}" hx-target="#main-content"{confirm_attr}>'
        f"{_hidden('csrf_token', csrf)}{_hidden('next', next_url)}{extra}"
        f'<button type="submit" class="button button--{variant} button--small">{esc(label)}</button>'
        "</form>"
    )


def _sort_link(base: str, params: Mapping[str, str], key: str, label: str, default_key: str, default_asc: bool) -> str:
    """Column header link: clicking the active column flips the direction."""
    current = params.get("sort") or default_key
    asc = _asc(params, default_asc)
    query = dict(params)
    query["sort"] = key
    query["dir"] = ("desc" if asc else "asc") if current == key else "asc"
    arrow = (" ↑" if asc else " ↓") if current == key else ""
    href = f"{base}?{urlencode(query)}"
    return f'<a href="{esc(href)}" hx-get="{esc(href)}" hx-target="#main-content" hx-push-url="true">{esc(label)}{arrow}</a>'


def _student_label(p: Optional[Profile]) -> str:
    if p is None:
        return "(알 수 없음)"
    return p.name or "이름없음"


def _num(value: Optional[int]) -> str:
    return "-" if value is None else str(value)


async def _write(request: Request, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[str]:
    """Run a writer; return an error code instead of raising."""
    try:
        await _web().run_blocking(fn, *args, **kwargs)
    except (IdentityError, RecordError) as exc:
        logger.warning("Teacher write failed: %s", exc.code)
        return exc.code
    return None


async def _post_form(request: Request):
    web = _web()
    form = await request.form()
    return form, web.csrf_failure(request, form)


# --- Dashboard ------------------------------------------------------------------

async def _render_dashboard(request: Request, error: Optional[str] = None, status_code: int = 200):
    web = _web()
    csrf = web.csrf_token_for(request)
    try:
        students = await web.run_blocking(_profiles(request).list_profiles, role=STUDENT)
    except IdentityError as exc:
        logger.warning("Pending list failed: %s", exc.code)
        return web.render_page(request, "대시보드", _alert("학생 목록을 불러올 수 없습니다."), status_code=503)

    pending = roster.pending_students(roster.visible_students(students))
    if not pending:
        body = '<p class="text-muted">승인 대기 학생이 없습니다.</p>'
    else:
        items = "".join(
            f'<li class="list-row"><b>{esc(_num(p.grade))}-{esc(_num(p.class_no))} {esc(_num(p.student_no))} '
            f"{esc(_student_label(p))}</b>"
            f'{_action_form(f"/teacher/students/{p.id}/approve", "승인", csrf, "/teacher", variant="primary")}</li>'
            for p in pending
        )
        body = f'<ul class="list">{items}</ul>'
    content = f"""
    <section class="page teacher-dashboard">
        <h1>대시보드</h1>
        {_alert(error)}
        <h2>승인 대기: {len(pending)}명</h2>
        {body}
    </section>
    """
    return web.render_page(request, "대시보드", content, status_code=status_code)


@teacher_router.get("/teacher", response_class=HTMLResponse)
async def teacher_dashboard(request: Request):
    return await _render_dashboard(request)


# --- Students -------------------------------------------------------------------

STUDENTS_PATH = "/teacher/students"


async def _render_students(request: Request, params: Mapping[str, str], error: Optional[str] = None, status_code: int = 200):
    web = _web()
    csrf = web.csrf_token_for(request)
    try:
        students = await web.run_blocking(_profiles(request).list_profiles, role=STUDENT)
    except IdentityError as exc:
        logger.warning("Student list failed: %s", exc.code)
        return web.render_page(request, "학생 관리", _alert("학생 목록을 불러올 수 없습니다."), status_code=503)

    search = params.get("search", "")
    sort_key = params.get("sort") if params.get("sort") in roster.STUDENT_SORTS else "student_no"
    asc = _asc(params, True)
    rows = roster.filter_students(students, search=search, sort_key=sort_key, asc=asc)
    pending = [p for p in rows if not p.approved]
    next_url = f"{STUDENTS_PATH}?{urlencode(dict(params))}" if params else STUDENTS_PATH
    order = roster.calendar_order_for(sort_key)

    body_rows = []
    for p in rows:
        calendar_href = f"/teacher/calendar/{p.id}?{urlencode({'order': order})}"
        if p.approved:
            toggle = _action_form(
                f"{STUDENTS_PATH}/{p.id}/revoke", "승인 취소", csrf, next_url,
                confirm=f"{_student_label(p)}의 승인을 취소할까요? 취소하면 학생은 승인 대기 상태로 돌아갑니다.",
            )
        else:
            toggle = _action_form(f"{STUDENTS_PATH}/{p.id}/approve", "승인", csrf, next_url, variant="primary")
        hide = _action_form(
            f"{STUDENTS_PATH}/{p.id}/hide", "숨기기", csrf, next_url,
            confirm=f"{_student_label(p)}을(를) 목록에서 숨길까요?",
        )
        grant = _action_form(
            f"{STUDENTS_PATH}/{p.id}/grant-teacher", "선생님 권한 주기", csrf, next_url,
            confirm=f"{_student_label(p)}에게 선생님 권한을 부여할까요? 선생님 권한은 전체 학생 조회/승인/결석 처리 권한을 포함합니다.",
        )
        status = '<span class="badge badge--approved">승인됨</span>' if p.approved else '<span class="badge badge--pending">미승인</span>'
        body_rows.append(
            "<tr>"
            f'<td><a href="{esc(calendar_href)}">{esc(_student_label(p))}</a></td>'
            f"<td>{esc(_num(p.grade))}</td><td>{esc(_num(p.class_no))}</td><td>{esc(_num(p.student_no))}</td>"
            f"<td>{status}</td><td class=\"actions\">{toggle}{hide}{grant}</td>"
            "</tr>"
        )
    table = (
        '<p class="text-muted">검색 결과가 없습니다.</p>'
        if not rows
        else f"""
        <table class="table">
            <thead><tr>
                <th>이름</th><th>기수</th>
                <th>{_sort_link(STUDENTS_PATH, params, "class_no", "반", "student_no", True)}</th>
                <th>{_sort_link(STUDENTS_PATH, params, "student_no", "학번", "student_no", True)}</th>
                <th>{_sort_link(STUDENTS_PATH, params, "approved", "승인 여부", "student_no", True)}</th>
                <th>처리</th>
            </tr></thead>
            <tbody>{''.join(body_rows)}</tbody>
        </table>"""
    )
    approve_all = ""
    if pending:
        ids = "".join(_hidden("ids", p.id) for p in pending)
        approve_all = _action_form(
            f"{STUDENTS_PATH}/approve-all", f"전체 승인 ({len(pending)})", csrf, next_url,
            variant="primary",
            confirm=f"현재 목록에서 대기 중인 {len(pending)}명을 모두 승인할까요? (숨긴 학생은 승인하지 않습니다)",
            extra=ids,
        )
    content = f"""
    <section class="page teacher-students">
        <h1>학생 관리</h1>
        <p class="text-muted">학생 승인 상태를 조회/변경합니다. (이름 클릭 → 캘린더)</p>
        {_alert(error)}
        <form method="get" action="{STUDENTS_PATH}" class="filter-bar" hx-get="{STUDENTS_PATH}" hx-target="#main-content" hx-push-url="true">
            <input type="search" name="search" value="{esc(search)}" placeholder="이름 검색" aria-label="이름 검색">
            {_hidden("sort", sort_key)}{_hidden("dir", "asc" if asc else "desc")}
            <button type="submit" class="button button--ghost">검색</button>
        </form>
        <div class="toolbar"><span>{len(rows)}명</span>{approve_all}</div>
        {table}
    </section>
    """
    return web.render_page(request, "학생 관리", content, status_code=status_code)


@teacher_router.get(STUDENTS_PATH, response_class=HTMLResponse)
async def teacher_students(request: Request):
    return await _render_students(request, dict(request.query_params))


async def _student_write(request: Request, fn: Callable[..., Any], *args: Any):
    form, denied = await _post_form(request)
    if denied is not None:
        return denied
    next_url = _safe_next(form.get("next"), STUDENTS_PATH)
    error = await _write(request, fn, _profiles(request), *args)
    if error:
        if next_url.partition("?")[0] == "/teacher":
            return await _render_dashboard(request, error=_message(error), status_code=400)
        return await _render_students(request, _params_of(next_url), error=_message(error), status_code=400)
    return _web().redirect_after_post(request, next_url)


@teacher_router.post(STUDENTS_PATH + "/approve-all", response_class=HTMLResponse)
async def teacher_approve_all(request: Request):
    """Approve the pending students of the filtered list (hidden/approved rows are skipped)."""
    form, denied = await _post_form(request)
    if denied is not None:
        return denied
    ids = [str(v) for v in form.getlist("ids") if v]
    next_url = _safe_next(form.get("next"), STUDENTS_PATH)
    error = await _write(request, writers.approve_all, _profiles(request), ids)
    if error:
        return await _render_students(request, _params_of(next_url), error=_message(error), status_code=400)
    return _web().redirect_after_post(request, next_url)


@teacher_router.post(STUDENTS_PATH + "/{profile_id}/approve", response_class=HTMLResponse)
async def teacher_approve(request: Request, profile_id: str):
    return await _student_write(request, writers.approve, profile_id)


@teacher_router.post(STUDENTS_PATH + "/{profile_id}/revoke", response_class=HTMLResponse)
async def teacher_revoke(request: Request, profile_id: str):
    """Withdraw approval; the student lands on /pending with the next refresh."""
    return await _student_write(request, writers.revoke, profile_id)


@teacher_router.post(STUDENTS_PATH + "/{profile_id}/hide", response_class=HTMLResponse)
async def teacher_hide(request: Request, profile_id: str):
    return await _student_write(request, writers.hide, profile_id)


@teacher_router.post(STUDENTS_PATH + "/{profile_id}/grant-teacher", response_class=HTMLResponse)
async def teacher_grant(request: Request, profile_id: str):
    """Grant the teacher role (role=teacher, approved=true, audit columns set)."""
    return await _student_write(request, writers.grant_role, profile_id, TEACHER, request.state.profile.id)


# --- Teachers -------------------------------------------------------------------

TEACHERS_PATH = "/teacher/teachers"


async def _render_teachers(request: Request, params: Mapping[str, str], error: Optional[str] = None, status_code: int = 200):
    web = _web()
    csrf = web.csrf_token_for(request)
    store = _profiles(request)
    try:
        everyone = await web.run_blocking(store.list_profiles)
        include_revoked = params.get("include_revoked", "1") != "0"
        candidates = roster.teacher_candidates(everyone, include_revoked=include_revoked)
        actor_ids = sorted({p.role_updated_by for p in candidates if p.role_updated_by})
        actors = await web.run_blocking(store.list_by_ids, actor_ids) if actor_ids else []
    except IdentityError as exc:
        logger.warning("Teacher list failed: %s", exc.code)
        return web.render_page(request, "선생님 목록", _alert("선생님 목록을 불러올 수 없습니다."), status_code=503)

    actor_names = {a.id: a.name or "이름없음" for a in actors}
    approval = params.get("approval") if params.get("approval") in roster.APPROVAL_FILTERS else "all"
    sort_key = params.get("sort") if params.get("sort") in roster.TEACHER_SORTS else "created_at"
    asc = _asc(params, False)
    search = params.get("search", "")
    counts = roster.teacher_counts(candidates)
    rows = roster.filter_teachers(candidates, approval=approval, search=search, sort_key=sort_key, asc=asc)
    next_url = f"{TEACHERS_PATH}?{urlencode(dict(params))}" if params else TEACHERS_PATH
    me = request.state.profile.id

    body_rows = []
    for p in rows:
        revoked = roster.is_revoked(p)
        role_label = "권한 박탈" if revoked else ("선생님" if p.role == TEACHER else "학생")
        action = ""
        if p.role == TEACHER and p.id != me:
            action = _action_form(
                f"{TEACHERS_PATH}/{p.id}/revoke-role", "권한 박탈", csrf, next_url,
                variant="danger", confirm=f"진짜로 {p.name or '이름없음'}의 선생님 권한을 박탈할까요?",
            )
        body_rows.append(
            "<tr>"
            f"<td>{esc(p.name or '이름없음')}</td>"
            f"<td>{esc(role_label)}</td>"
            f"<td>{'승인' if p.approved else '대기'}</td>"
            f"<td>{esc((p.created_at or '')[:10])}</td>"
            f"<td>{esc((p.role_updated_at or '')[:10]) or '-'}</td>"
            f"<td>{esc(actor_names.get(p.role_updated_by or '', '-'))}</td>"
            f'<td class="actions">{action}</td>'
            "</tr>"
        )
    table = (
        '<p class="text-muted">결과가 없습니다.</p>'
        if not rows
        else f"""
        <table class="table">
            <thead><tr>
                <th>{_sort_link(TEACHERS_PATH, params, "name", "이름", "created_at", False)}</th>
                <th>{_sort_link(TEACHERS_PATH, params, "role", "권한", "created_at", False)}</th>
                <th>{_sort_link(TEACHERS_PATH, params, "approved", "승인", "created_at", False)}</th>
                <th>{_sort_link(TEACHERS_PATH, params, "created_at", "생성일", "created_at", False)}</th>
                <th>{_sort_link(TEACHERS_PATH, params, "role_updated_at", "권한 박탈/변경일", "created_at", False)}</th>
                <th>권한 박탈/변경자</th>
                <th>처리</th>
            </tr></thead>
            <tbody>{''.join(body_rows)}</tbody>
        </table>"""
    )
    approval_options = "".join(
        f'<option value="{v}"{" selected" if v == approval else ""}>{label}</option>'
        for v, label in (("all", "전체"), ("approved", "승인"), ("pending", "대기"))
    )
    content = f"""
    <section class="page teacher-teachers">
        <h1>선생님 목록</h1>
        {_alert(error)}
        <p class="text-muted">전체 {counts.total}명 / 승인 {counts.approved}명 / 권한 박탈 {counts.revoked}명</p>
        <form method="get" action="{TEACHERS_PATH}" class="filter-bar" hx-get="{TEACHERS_PATH}" hx-target="#main-content" hx-push-url="true">
            <input type="search" name="search" value="{esc(search)}" placeholder="이름 검색" aria-label="이름 검색">
            <select name="approval" aria-label="승인 상태">{approval_options}</select>
            <label><input type="checkbox" name="include_revoked" value="1"{" checked" if include_revoked else ""}> 권한 박탈 포함</label>
            <input type="hidden" name="include_revoked" value="0">
            {_hidden("sort", sort_key)}{_hidden("dir", "asc" if asc else "desc")}
            <button type="submit" class="button button--ghost">적용</button>
        </form>
        {table}
    </section>
    """
    return web.render_page(request, "선생님 목록", content, status_code=status_code)


@teacher_router.get(TEACHERS_PATH, response_class=HTMLResponse)
async def teacher_teachers(request: Request):
    params = dict(request.query_params)
    # Checkbox + hidden fallback: a checked box sends "1" first.
    values = request.query_params.getlist("include_revoked")
    if values:
        params["include_revoked"] = "1" if "1" in values else "0"
    return await _render_teachers(request, params)


@teacher_router.post(TEACHERS_PATH + "/{profile_id}/revoke-role", response_class=HTMLResponse)
async def teacher_revoke_role(request: Request, profile_id: str):
    """Demote a teacher to student; the caller is recorded as the actor."""
    form, denied = await _post_form(request)
    if denied is not None:
        return denied
    next_url = _safe_next(form.get("next"), TEACHERS_PATH)
    error = await _write(request, writers.revoke_role, _profiles(request), profile_id, request.state.profile.id)
    if error:
        return await _render_teachers(request, _params_of(next_url), error=_message(error), status_code=400)
    return _web().redirect_after_post(request, next_url)


# --- Absences -------------------------------------------------------------------

ABSENCES_PATH = "/teacher/absences"


async def _render_absences(request: Request, params: Mapping[str, str], error: Optional[str] = None, status_code: int = 200):
    web = _web()
    csrf = web.csrf_token_for(request)
    try:
        absences = await web.run_blocking(_records(request).list_absences)
        ids = sorted({a.student_id for a in absences})
        students = await web.run_blocking(_profiles(request).list_by_ids, ids) if ids else []
    except (RecordError, IdentityError) as exc:
        logger.warning("Absence list failed: %s", exc.code)
        return web.render_page(request, "결석", _alert("결석 목록을 불러올 수 없습니다."), status_code=503)

    status = params.get("status") if params.get("status") in roster.STATUS_FILTERS else "all"
    sort_key = params.get("sort") if params.get("sort") in roster.ABSENCE_SORTS else "date"
    asc = _asc(params, False)
    search = params.get("search", "")
    date_from = params.get("from", "")
    date_to = params.get("to", "")
    rows = roster.filter_absences(
        roster.join_students(absences, students),
        status=status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        sort_key=sort_key,
        asc=asc,
    )
    next_url = f"{ABSENCES_PATH}?{urlencode(dict(params))}" if params else ABSENCES_PATH

    body_rows = []
    for r in rows:
        a = r.absence
        buttons = "".join(
            _action_form(
                f"{ABSENCES_PATH}/{a.id}/status",
                "대기로" if s == "pending" else STATUS_LABELS[s],
                csrf,
                next_url,
                variant="primary" if s == "approved" else "ghost",
                extra=_hidden("status", s),
            )
            for s in ABSENCE_STATUSES
            if s != a.status
        )
        s = r.student
        who = f"{_num(s.class_no)}반 {_num(s.student_no)}번" if s else "-"
        body_rows.append(
            "<tr>"
            f"<td>{esc(a.date)}</td>"
            f"<td>{esc(r.student_name or '(알 수 없음)')}<br><small>{esc(who)}</small></td>"
            f"<td>{esc(a.reason)}</td>"
            f'<td><span class="badge badge--{esc(a.status)}">{esc(a.status_label)}</span></td>'
            f"<td>{esc((a.created_at or '')[:16].replace('T', ' '))}</td>"
            f'<td class="actions">{buttons}</td>'
            "</tr>"
        )
    table = (
        '<p class="text-muted">검색 결과가 없습니다.</p>'
        if not rows
        else f"""
        <table class="table">
            <thead><tr>
                <th>{_sort_link(ABSENCES_PATH, params, "date", "날짜", "date", False)}</th>
                <th>{_sort_link(ABSENCES_PATH, params, "class_student", "학생(반/번호)", "date", False)}</th>
                <th>사유</th>
                <th>{_sort_link(ABSENCES_PATH, params, "status", "상태", "date", False)}</th>
                <th>{_sort_link(ABSENCES_PATH, params, "created_at", "제출일", "date", False)}</th>
                <th>처리</th>
            </tr></thead>
            <tbody>{''.join(body_rows)}</tbody>
        </table>"""
    )
    status_options = "".join(
        f'<option value="{v}"{" selected" if v == status else ""}>{"전체" if v == "all" else STATUS_LABELS[v]}</option>'
        for v in roster.STATUS_FILTERS
    )
    content = f"""
    <section class="page teacher-absences">
        <h1>결석 확인</h1>
        <p class="text-muted">학생 결석 제출을 조회/처리합니다. 처리 버튼은 상태만 변경합니다. (되돌리기 = 대기로 변경)</p>
        {_alert(error)}
        <form method="get" action="{ABSENCES_PATH}" class="filter-bar" hx-get="{ABSENCES_PATH}" hx-target="#main-content" hx-push-url="true">
            <input type="search" name="search" value="{esc(search)}" placeholder="학생 검색" aria-label="학생 검색">
            <select name="status" aria-label="상태">{status_options}</select>
            <label>시작 날짜 <input type="date" name="from" value="{esc(date_from)}"></label>
            <label>끝 날짜 <input type="date" name="to" value="{esc(date_to)}"></label>
            {_hidden("sort", sort_key)}{_hidden("dir", "asc" if asc else "desc")}
            <button type="submit" class="button button--ghost">적용</button>
        </form>
        <p>{len(rows)}건</p>
        {table}
    </section>
    """
    return web.render_page(request, "결석", content, status_code=status_code)


@teacher_router.get(ABSENCES_PATH, response_class=HTMLResponse)
async def teacher_absences(request: Request):
    return await _render_absences(request, dict(request.query_params))


@teacher_router.post(ABSENCES_PATH + "/{absence_id}/status", response_class=HTMLResponse)
async def teacher_absence_status(request: Request, absence_id: str):
    """Set an absence to approved, rejected or back to pending."""
    form, denied = await _post_form(request)
    if denied is not None:
        return denied
    next_url = _safe_next(form.get("next"), ABSENCES_PATH)
    try:
        status = validate_absence_status(form.get("status"))
    except RecordError as exc:
        return await _render_absences(request, _params_of(next_url), error=_message(exc.code), status_code=400)
    error = await _write(request, _records(request).set_absence_status, absence_id=absence_id, status=status)
    if error:
        return await _render_absences(request, _params_of(next_url), error=_message(error), status_code=400)
    return _web().redirect_after_post(request, next_url)


# --- Per-student calendar -------------------------------------------------------

CALENDAR_PATH = "/teacher/calendar"


async def _ordered_students(request: Request, order: str):
    students = await _web().run_blocking(_profiles(request).list_profiles, role=STUDENT)
    return roster.calendar_student_order(students, order)


def _order_param(raw: Optional[str]) -> str:
    return raw if raw in roster.CALENDAR_ORDERS else "student_no"


@teacher_router.get(CALENDAR_PATH, response_class=HTMLResponse)
async def teacher_calendar_first(request: Request, order: str | None = None):
    """Open the calendar of the first student in the chosen order."""
    web = _web()
    order = _order_param(order)
    try:
        ordered = await _ordered_students(request, order)
    except IdentityError as exc:
        logger.warning("Student list failed: %s", exc.code)
        return web.render_page(request, "캘린더", _alert("학생 목록을 불러올 수 없습니다."), status_code=503)
    if not ordered:
        content = '<section class="page"><h1>캘린더</h1><p class="text-muted">등록된 학생이 없습니다.</p></section>'
        return web.render_page(request, "캘린더", content)
    return web.redirect_to(request, f"{CALENDAR_PATH}/{ordered[0].id}?{urlencode({'order': order})}")


@teacher_router.get(CALENDAR_PATH + "/{student_id}", response_class=HTMLResponse)
async def teacher_calendar(
    request: Request,
    student_id: str,
    week: str | None = None,
    day: str | None = None,
    order: str | None = None,
):
    """A student's week (read only) with previous/next student navigation."""
    web = _web()
    order = _order_param(order)
    today = web.today()
    window = open_week(week, today)
    day_index = parse_day_param(day, today_index(today) if window.is_this_week else 0)
    try:
        ordered = await _ordered_students(request, order)
        events = await web.run_blocking(
            _records(request).list_events, owner_id=student_id, start=window.start_iso, end=window.end_iso
        )
    except (IdentityError, RecordError) as exc:
        logger.warning("Student calendar failed: %s", exc.code)
        return web.render_page(request, "캘린더", _alert("캘린더를 불러올 수 없습니다."), status_code=503)

    student = next((p for p in ordered if p.id == student_id), None)
    if student is None:
        content = '<section class="page"><h1>캘린더</h1><p class="text-muted">학생 정보를 찾을 수 없습니다.</p></section>'
        return web.render_page(request, "캘린더", content, status_code=404)

    prev_p, next_p = roster.neighbours(ordered, student_id)
    keep = {"order": order, "week": window.start_iso, "day": str(day_index)}

    def nav(p: Optional[Profile], label: str) -> str:
        if p is None:
            return f'<span class="button button--ghost is-disabled" aria-disabled="true">{esc(label)}</span>'
        href = f"{CALENDAR_PATH}/{p.id}?{urlencode(keep)}"
        return f'<a class="button button--ghost" href="{esc(href)}" hx-get="{esc(href)}" hx-target="#main-content" hx-push-url="true">{esc(label)}</a>'

    current = ' aria-current="true"'
    order_links = " · ".join(
        f'<a href="{esc(CALENDAR_PATH)}/{esc(student_id)}?{esc(urlencode(dict(keep, order=o)))}"'
        f"{current if o == order else ''}>{label}</a>"
        for o, label in (("student_no", "학번순"), ("class", "반순"))
    )
    calendar = WeekCalendar(
        window,
        day_index,
        events,
        base_path=f"{CALENDAR_PATH}/{student_id}",
        extra_query={"order": order},
        today_iso=to_iso_date(today),
    )
    content = f"""
    <section class="page teacher-calendar">
        <h1>학생 캘린더</h1>
        <div class="student-nav">
            {nav(prev_p, "← 이전")}
            <strong>{esc(_student_label(student))} ({esc(_num(student.class_no))}반 {esc(_num(student.student_no))}번)</strong>
            {nav(next_p, "다음 →")}
        </div>
        <p class="text-muted">정렬: {order_links}</p>
        {calendar.render()}
    </section>
    """
    return web.render_page(request, "학생 캘린더", content)


# --- Weekly audit ---------------------------------------------------------------

WEEKLY_PATH = "/teacher/weekly"


@teacher_router.get(WEEKLY_PATH, response_class=HTMLResponse)
async def teacher_weekly(request: Request, week: str | None = None, sort: str | None = None, dir: str | None = None):
    """Per-student minutes of one week, sorted by total or category."""
    web = _web()
    window = open_week(week, web.today())
    try:
        students = await web.run_blocking(_profiles(request).list_profiles, role=STUDENT)
        minutes = await web.run_blocking(_records(request).list_week_minutes, start=window.start_iso, end=window.end_iso)
    except (IdentityError, RecordError) as exc:
        logger.warning("Weekly audit failed: %s", exc.code)
        return web.render_page(request, "주간 학습", _alert("주간 집계를 불러올 수 없습니다."), status_code=503)

    params = {"week": window.start_iso, "sort": sort or SORT_TOTAL, "dir": dir or "asc"}
    sort_key = params["sort"] if params["sort"] in (SORT_TOTAL, SORT_BASIC, SORT_CAREER) else SORT_TOTAL
    # Default: total ascending, students with the least time first.
    asc = _asc(params, True)
    rows = sort_weekly_rows(weekly_rows(students, minutes), sort_key, asc)

    body_rows = "".join(
        "<tr>"
        f'<td><a href="{CALENDAR_PATH}/{esc(r.student_id)}?{esc(urlencode({"week": window.start_iso, "order": "class"}))}">'
        f"{esc(r.name or '이름없음')}</a></td>"
        f"<td>{esc(_num(r.class_no))}</td><td>{esc(_num(r.student_no))}</td>"
        f'<td title="{esc(format_minutes(r.basic))}">{esc(format_decimal_hours(r.basic))}</td>'
        f'<td title="{esc(format_minutes(r.career))}">{esc(format_decimal_hours(r.career))}</td>'
        f'<td title="{esc(format_minutes(r.total))}"><strong>{esc(format_decimal_hours(r.total))}</strong></td>'
        "</tr>"
        for r in rows
    )
    def week_link(iso: str, label: str) -> str:
        href = f"{WEEKLY_PATH}?{urlencode(dict(params, week=iso))}"
        return f'<a class="button button--ghost" href="{esc(href)}" hx-get="{esc(href)}" hx-target="#main-content" hx-push-url="true">{esc(label)}</a>'

    table = (
        '<p class="text-muted">등록된 학생이 없습니다.</p>'
        if not rows
        else f"""
        <table class="table">
            <thead><tr>
                <th>이름</th><th>반</th><th>학번</th>
                <th>{_sort_link(WEEKLY_PATH, params, SORT_BASIC, "기초 역량 강화", SORT_TOTAL, True)}</th>
                <th>{_sort_link(WEEKLY_PATH, params, SORT_CAREER, "진로 탐색", SORT_TOTAL, True)}</th>
                <th>{_sort_link(WEEKLY_PATH, params, SORT_TOTAL, "총 합", SORT_TOTAL, True)}</th>
            </tr></thead>
            <tbody>{body_rows}</tbody>
        </table>"""
    )
    this_week = " (이번 주)" if window.is_this_week else ""
    content = f"""
    <section class="page teacher-weekly">
        <h1>주간 학습</h1>
        <div class="week-nav">
            {week_link(window.prev_iso, "← 이전 주")}
            <strong>{esc(window.label)}{this_week}</strong>
            {week_link(window.next_iso, "다음 주 →")}
            {week_link(to_iso_date(window.this_monday), "이번 주")}
        </div>
        <p class="text-muted">동률일 때는 반 → 학번 → 이름으로 정렬합니다.</p>
        {table}
    </section>
    """
    return web.render_page(request, "주간 학습", content)
