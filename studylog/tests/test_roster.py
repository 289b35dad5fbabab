"""Student, teacher and absence list shaping for the teacher pages."""
from studylog.identity_access.domain import STUDENT, TEACHER, Profile
from studylog.records import roster
from studylog.records.models import Absence


def _students():
    return [
        Profile(id="s1", name="김하나", approved=True, grade=1, class_no=2, student_no=5),
        Profile(id="s2", name="이두울", approved=False, grade=1, class_no=1, student_no=7),
        Profile(id="s3", name="박세엣", approved=False, grade=1, class_no=1, student_no=None),
        Profile(id="s4", name="숨김", approved=False, is_hidden=True, class_no=1, student_no=1),
        Profile(id="t1", name="선생", role=TEACHER, approved=True),
    ]


def test_visible_students_exclude_teachers_and_hidden_rows():
    assert [p.id for p in roster.visible_students(_students())] == ["s1", "s2", "s3"]


def test_pending_students_order_by_grade_class_number():
    pending = roster.pending_students(roster.visible_students(_students()))
    assert [p.id for p in pending] == ["s2", "s3"]


def test_student_search_is_case_insensitive_substring():
    assert [p.id for p in roster.filter_students(_students(), search="두")] == ["s2"]
    assert roster.filter_students(_students(), search="없는이름") == []


def test_student_sort_keeps_missing_numbers_last_ascending_first_descending():
    asc = roster.filter_students(_students(), sort_key="student_no", asc=True)
    desc = roster.filter_students(_students(), sort_key="student_no", asc=False)
    assert [p.id for p in asc] == ["s1", "s2", "s3"]
    assert [p.id for p in desc] == ["s3", "s2", "s1"]


def test_student_sort_by_approval():
    rows = roster.filter_students(_students(), sort_key="approved", asc=True)
    assert rows[-1].id == "s1"


def test_calendar_order_follows_the_list_sort():
    assert roster.calendar_order_for("class_no") == "class"
    assert roster.calendar_order_for("student_no") == "student_no"
    assert roster.calendar_order_for("approved") == "student_no"


def _teachers():
    return [
        Profile(id="t1", name="가선생", role=TEACHER, approved=True, created_at="2026-01-01"),
        Profile(id="t2", name="나선생", role=TEACHER, approved=False, created_at="2026-02-01"),
        Profile(
            id="x1",
            name="다전직",
            role=STUDENT,
            approved=True,
            created_at="2025-12-01",
            role_updated_by="t1",
            role_updated_at="2026-03-01",
        ),
        Profile(id="s1", name="학생", role=STUDENT, approved=True, created_at="2026-01-05"),
    ]


def test_teacher_candidates_include_revoked_former_teachers_on_request():
    assert [p.id for p in roster.teacher_candidates(_teachers())] == ["t1", "t2", "x1"]
    assert [p.id for p in roster.teacher_candidates(_teachers(), include_revoked=False)] == ["t1", "t2"]
    counts = roster.teacher_counts(roster.teacher_candidates(_teachers()))
    assert (counts.total, counts.approved, counts.revoked) == (3, 2, 1)


def test_teacher_filter_by_approval_and_sort_by_creation():
    candidates = roster.teacher_candidates(_teachers())
    newest_first = roster.filter_teachers(candidates)
    assert [p.id for p in newest_first] == ["t2", "t1", "x1"]
    pending = roster.filter_teachers(candidates, approval="pending")
    assert [p.id for p in pending] == ["t2"]
    by_name = roster.filter_teachers(candidates, sort_key="name", asc=True)
    assert [p.id for p in by_name] == ["t1", "t2", "x1"]


def _absence_rows():
    students = [
        Profile(id="s1", name="김하나", class_no=2, student_no=1),
        Profile(id="s2", name="이두울", class_no=1, student_no=9),
    ]
    absences = [
        Absence(id="a1", student_id="s1", date="2026-10-01", reason="r", status="pending", created_at="2026-09-30T10:00"),
        Absence(id="a2", student_id="s2", date="2026-10-05", reason="r", status="approved", created_at="2026-10-01T10:00"),
        Absence(id="a3", student_id="gone", date="2026-10-09", reason="r", status="rejected", created_at="2026-10-02T10:00"),
    ]
    return roster.join_students(absences, students)


def test_absence_rows_join_students_and_tolerate_missing_profiles():
    rows = _absence_rows()
    assert rows[0].student_name == "김하나"
    assert rows[2].student is None and rows[2].student_name == ""


def test_absence_filters_combine_status_name_and_date_range():
    rows = _absence_rows()
    assert [r.absence.id for r in roster.filter_absences(rows, status="approved")] == ["a2"]
    assert [r.absence.id for r in roster.filter_absences(rows, search="김")] == ["a1"]
    in_range = roster.filter_absences(rows, date_from="2026-10-02", date_to="2026-10-09")
    assert [r.absence.id for r in in_range] == ["a3", "a2"]


def test_absence_sort_by_class_and_student_number():
    rows = roster.filter_absences(_absence_rows(), sort_key="class_student", asc=True)
    assert [r.absence.id for r in rows] == ["a2", "a1", "a3"]


def test_calendar_navigation_order_and_neighbours():
    students = [
        Profile(id="a", class_no=2, student_no=1),
        Profile(id="b", class_no=1, student_no=2),
        Profile(id="c", class_no=1, student_no=3),
    ]
    by_number = roster.calendar_student_order(students, "student_no")
    by_class = roster.calendar_student_order(students, "class")
    assert [p.id for p in by_number] == ["a", "b", "c"]
    assert [p.id for p in by_class] == ["b", "c", "a"]

    prev_p, next_p = roster.neighbours(by_class, "c")
    assert (prev_p.id, next_p.id) == ("b", "a")
    assert roster.neighbours(by_class, "b")[0] is None
    assert roster.neighbours(by_class, "missing") == (None, None)
