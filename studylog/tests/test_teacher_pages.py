"""
Teacher pages: approvals, student/teacher management, absences, the
per-student calendar and the weekly audit.
"""
from datetime import date
from urllib.parse import urlencode

import httpx
import pytest
from httpx import ASGITransport

from studylog.identity_access.domain import STUDENT, TEACHER
from studylog.records.models import BASIC, CAREER
from studylog.tests.utils.app_session import csrf_of, login_as, make_profile
from studylog.web import main

pytestmark = pytest.mark.anyio

TODAY = date(2026, 10, 14)


@pytest.fixture(autouse=True)
def _pinned_today(monkeypatch):
    monkeypatch.setattr(main, "today", lambda: TODAY)


def _client():
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _login_teacher(client):
    return login_as(client, "t1", role=TEACHER, name="박선생")


def _seed_students():
    make_profile("s1", approved=False, name="김민수", grade=1, class_no=2, student_no=5)
    make_profile("s2", approved=False, name="이서연", grade=1, class_no=1, student_no=7, is_hidden=True)
    make_profile("s3", approved=True, name="최지우", grade=1, class_no=1, student_no=3)


async def test_student_cannot_open_teacher_pages():
    async with _client() as client:
        login_as(client, "s9")
        r = await client.get("/teacher/students", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/student/calendar"


async def test_dashboard_lists_visible_pending_students():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher")
    assert r.status_code == 200
    assert "승인 대기: 1명" in r.text
    assert "김민수" in r.text
    assert "이서연" not in r.text
    assert 'action="/teacher/students/s1/approve"' in r.text


async def test_dashboard_empty_state():
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher")
    assert "승인 대기 학생이 없습니다." in r.text


async def test_approve_from_dashboard_returns_to_dashboard():
    _seed_students()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/students/s1/approve",
            data={"csrf_token": csrf_of(sid), "next": "/teacher"},
            follow_redirects=False,
        )
    assert r.status_code == 303
    assert r.headers["location"] == "/teacher"
    assert main.PROFILES.get_profile("s1").approved is True


async def test_approve_all_skips_hidden_and_approved_students():
    _seed_students()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/students/approve-all",
            data={"csrf_token": csrf_of(sid), "ids": ["s1", "s2", "s3"], "next": "/teacher/students"},
            follow_redirects=False,
        )
    assert r.status_code == 303
    assert main.PROFILES.get_profile("s1").approved is True
    assert main.PROFILES.get_profile("s2").approved is False


async def test_student_list_hides_hidden_rows_and_links_the_calendar():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/students?sort=class_no&dir=asc")
    assert "이서연" not in r.text
    assert "/teacher/calendar/s1?order=class" in r.text
    # Pending students of the current list feed the approve-all form.
    assert "전체 승인 (1)" in r.text
    assert r.text.index("최지우") < r.text.index("김민수")


async def test_student_list_search():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/students?search=최지")
    assert "최지우" in r.text
    assert "김민수" not in r.text


async def test_write_keeps_the_filtered_list_url():
    _seed_students()
    next_url = "/teacher/students?" + urlencode({"search": "최지", "sort": "class_no"})
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/students/s3/revoke",
            data={"csrf_token": csrf_of(sid), "next": next_url},
            follow_redirects=False,
        )
    assert r.headers["location"] == next_url
    assert main.PROFILES.get_profile("s3").approved is False


async def test_write_ignores_external_next_url():
    _seed_students()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/students/s1/hide",
            data={"csrf_token": csrf_of(sid), "next": "https://evil.example/"},
            follow_redirects=False,
        )
    assert r.headers["location"] == "/teacher/students"
    assert main.PROFILES.get_profile("s1").is_hidden is True


async def test_grant_teacher_role_approves_and_records_actor():
    _seed_students()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/students/s1/grant-teacher",
            data={"csrf_token": csrf_of(sid)},
            follow_redirects=False,
        )
    assert r.status_code == 303
    promoted = main.PROFILES.get_profile("s1")
    assert promoted.role == TEACHER
    assert promoted.approved is True
    assert promoted.role_updated_by == "t1"


async def test_approving_unknown_student_rerenders_with_message():
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post("/teacher/students/nobody/approve", data={"csrf_token": csrf_of(sid)})
    assert r.status_code == 400
    assert "변경되지 않았습니다." in r.text


async def test_student_writes_require_csrf():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        r = await client.post("/teacher/students/s1/approve", data={"csrf_token": "nope"})
    assert r.status_code == 403
    assert main.PROFILES.get_profile("s1").approved is False


async def test_revoke_role_demotes_and_lists_as_revoked():
    make_profile("t2", role=TEACHER, name="정선생")
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            "/teacher/teachers/t2/revoke-role",
            data={"csrf_token": csrf_of(sid), "next": "/teacher/teachers"},
            follow_redirects=False,
        )
        listed = await client.get("/teacher/teachers")
        without = await client.get("/teacher/teachers?include_revoked=0")
        with_box = await client.get("/teacher/teachers?include_revoked=1&include_revoked=0")
    assert r.status_code == 303
    demoted = main.PROFILES.get_profile("t2")
    assert demoted.role == STUDENT
    assert demoted.role_updated_by == "t1"
    assert "정선생" in listed.text
    assert "권한 박탈 1명" in listed.text
    assert "박선생" in listed.text  # actor column
    assert "정선생" not in without.text
    assert "정선생" in with_box.text


async def test_cannot_revoke_own_teacher_role():
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post("/teacher/teachers/t1/revoke-role", data={"csrf_token": csrf_of(sid)})
    assert r.status_code == 400
    assert "자기 자신의 권한은 박탈할 수 없습니다." in r.text
    assert main.PROFILES.get_profile("t1").role == TEACHER


async def test_teacher_list_has_no_revoke_button_for_self():
    make_profile("t2", role=TEACHER, name="정선생")
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/teachers")
    assert 'action="/teacher/teachers/t2/revoke-role"' in r.text
    assert 'action="/teacher/teachers/t1/revoke-role"' not in r.text


def _seed_absences():
    _seed_students()
    a1 = main.RECORDS.insert_absence(student_id="s1", payload={"date": "2026-10-05", "reason": "병원 진료"})
    a2 = main.RECORDS.insert_absence(student_id="s3", payload={"date": "2026-10-09", "reason": "가족 행사"})
    main.RECORDS.set_absence_status(absence_id=a2.id, status="approved")
    return a1, a2


async def test_absence_list_filters_by_status_and_date():
    _seed_absences()
    async with _client() as client:
        _login_teacher(client)
        pending = await client.get("/teacher/absences?status=pending")
        ranged = await client.get("/teacher/absences?from=2026-10-08&to=2026-10-31")
        searched = await client.get("/teacher/absences?search=김민")
    assert "병원 진료" in pending.text and "가족 행사" not in pending.text
    assert "가족 행사" in ranged.text and "병원 진료" not in ranged.text
    assert "병원 진료" in searched.text and "가족 행사" not in searched.text
    assert "2반 5번" in searched.text


async def test_set_absence_status():
    a1, _ = _seed_absences()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            f"/teacher/absences/{a1.id}/status",
            data={"csrf_token": csrf_of(sid), "status": "rejected", "next": "/teacher/absences?status=pending"},
            follow_redirects=False,
        )
    assert r.status_code == 303
    assert r.headers["location"] == "/teacher/absences?status=pending"
    assert main.RECORDS.absences[a1.id].status == "rejected"


async def test_set_absence_status_rejects_unknown_value():
    a1, _ = _seed_absences()
    async with _client() as client:
        sid = _login_teacher(client)
        r = await client.post(
            f"/teacher/absences/{a1.id}/status", data={"csrf_token": csrf_of(sid), "status": "deleted"}
        )
    assert r.status_code == 400
    assert "상태 값이 올바르지 않습니다." in r.text
    assert main.RECORDS.absences[a1.id].status == "pending"


async def test_calendar_index_opens_first_student():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        by_number = await client.get("/teacher/calendar", follow_redirects=False)
        by_class = await client.get("/teacher/calendar?order=class", follow_redirects=False)
    assert by_number.headers["location"] == "/teacher/calendar/s3?order=student_no"
    assert by_class.headers["location"] == "/teacher/calendar/s3?order=class"


async def test_student_calendar_is_read_only_with_neighbours():
    _seed_students()
    main.RECORDS.insert_event(
        owner_id="s1",
        payload={"date": "2026-10-14", "category": CAREER, "title": "직업 체험", "duration_min": 90},
    )
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/calendar/s1?order=student_no")
    assert r.status_code == 200
    assert "김민수 (2반 5번)" in r.text
    assert "직업 체험" in r.text
    assert "/student/events/" not in r.text
    # Order by student number: s3 (3), s1 (5), s2 (7).
    assert "/teacher/calendar/s3?" in r.text
    assert "/teacher/calendar/s2?" in r.text


async def test_student_calendar_allows_any_week():
    _seed_students()
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/calendar/s1?week=2025-03-03")
    assert r.status_code == 200
    assert "3/3 ~ 3/9" in r.text
    assert 'aria-disabled="true">← 이전 주' not in r.text


async def test_student_calendar_unknown_student():
    async with _client() as client:
        _login_teacher(client)
        r = await client.get("/teacher/calendar/missing")
    assert r.status_code == 404


async def test_weekly_audit_sorts_by_total_ascending_by_default():
    _seed_students()
    for owner, category, minutes in (("s1", BASIC, 60), ("s1", CAREER, 30), ("s3", BASIC, 30)):
        main.RECORDS.insert_event(
            owner_id=owner,
            payload={"date": "2026-10-13", "category": category, "title": "학습", "duration_min": minutes},
        )
    # Outside the week: not counted.
    main.RECORDS.insert_event(
        owner_id="s3",
        payload={"date": "2026-10-20", "category": BASIC, "title": "다음 주", "duration_min": 600},
    )
    async with _client() as client:
        _login_teacher(client)
        default = await client.get("/teacher/weekly")
        desc = await client.get("/teacher/weekly?sort=total&dir=desc")
    assert default.status_code == 200
    assert "(이번 주)" in default.text
    assert "1.5시간" in default.text
    # s2 has no minutes and comes first; then s3 (0.5h), then s1 (1.5h).
    assert default.text.index("이서연") < default.text.index("최지우") < default.text.index("김민수")
    assert desc.text.index("김민수") < desc.text.index("최지우")
