"""
Filtering and ordering of the teacher tables (students, teachers, absences).

All helpers are pure and operate on already fetched rows, so the web layer
can fetch once and sort per request parameters.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from studylog.identity_access.domain import STUDENT, TEACHER, Profile, normalize_role

from .models import Absence

# --- Students ---------------------------------------------------------------------

STUDENT_SORTS = ("student_no", "class_no", "approved")


def _name_matches(name: Optional[str], query: str) -> bool:
    q = (query or "").strip().lower()
    return not q or q in (name or "").lower()


def visible_students(profiles: Iterable[Profile]) -> List[Profile]:
    return [p for p in profiles if normalize_role(p.role) == STUDENT and not p.is_hidden]


def pending_students(profiles: Iterable[Profile]) -> List[Profile]:
    """Students awaiting approval ordered by grade, class, student number."""
    items = [p for p in profiles if normalize_role(p.role) == STUDENT and not p.approved]
    return sorted(
        items,
        key=lambda p: (_nulls_last(p.grade), _nulls_last(p.class_no), _nulls_last(p.student_no)),
    )


def _nulls_last(value: Optional[int]):
    return (value is None, value or 0)


def filter_students(
    profiles: Iterable[Profile],
    *,
    search: str = "",
    sort_key: str = "student_no",
    asc: bool = True,
) -> List[Profile]:
    items = [p for p in visible_students(profiles) if _name_matches(p.name, search)]
    if sort_key == "approved":
        return sorted(items, key=lambda p: int(bool(p.approved)), reverse=not asc)
    attr = sort_key if sort_key in STUDENT_SORTS else "student_no"
    present = [p for p in items if getattr(p, attr) is not None]
    missing = [p for p in items if getattr(p, attr) is None]
    present.sort(key=lambda p: getattr(p, attr), reverse=not asc)
    # Missing numbers go last when ascending, first when descending.
    return present + missing if asc else missing + present


def calendar_order_for(sort_key: str) -> str:
    return "class" if sort_key == "class_no" else "student_no"


# --- Teachers ---------------------------------------------------------------------

TEACHER_SORTS = ("created_at", "name", "approved", "role", "role_updated_at")
APPROVAL_FILTERS = ("all", "approved", "pending")


def is_revoked(profile: Profile) -> bool:
    """A former teacher: role is student and a role change was recorded."""
    return normalize_role(profile.role) == STUDENT and bool(profile.role_updated_at)


def teacher_candidates(profiles: Iterable[Profile], *, include_revoked: bool = True) -> List[Profile]:
    return [
        p
        for p in profiles
        if normalize_role(p.role) == TEACHER or (include_revoked and is_revoked(p))
    ]


@dataclass(frozen=True)
class TeacherCounts:
    total: int
    approved: int
    revoked: int


def teacher_counts(candidates: Sequence[Profile]) -> TeacherCounts:
    return TeacherCounts(
        total=len(candidates),
        approved=sum(1 for p in candidates if p.approved),
        revoked=sum(1 for p in candidates if is_revoked(p)),
    )


def filter_teachers(
    candidates: Iterable[Profile],
    *,
    approval: str = "all",
    search: str = "",
    sort_key: str = "created_at",
    asc: bool = False,
) -> List[Profile]:
    items = list(candidates)
    if approval == "approved":
        items = [p for p in items if p.approved]
    elif approval == "pending":
        items = [p for p in items if not p.approved]
    items = [p for p in items if _name_matches(p.name, search)]
    if sort_key == "approved":
        return sorted(items, key=lambda p: int(bool(p.approved)), reverse=not asc)
    attr = sort_key if sort_key in TEACHER_SORTS else "name"
    return sorted(items, key=lambda p: str(getattr(p, attr) or ""), reverse=not asc)


# --- Absences ---------------------------------------------------------------------

ABSENCE_SORTS = ("date", "status", "created_at", "class_student")
STATUS_FILTERS = ("all", "pending", "approved", "rejected")


@dataclass(frozen=True)
class AbsenceRow:
    absence: Absence
    student: Optional[Profile]

    @property
    def student_name(self) -> str:
        return (self.student.name if self.student else None) or ""


def join_students(absences: Iterable[Absence], students: Iterable[Profile]) -> List[AbsenceRow]:
    by_id: Dict[str, Profile] = {p.id: p for p in students}
    return [AbsenceRow(absence=a, student=by_id.get(a.student_id)) for a in absences]


def filter_absences(
    rows: Iterable[AbsenceRow],
    *,
    status: str = "all",
    search: str = "",
    date_from: str = "",
    date_to: str = "",
    sort_key: str = "date",
    asc: bool = False,
) -> List[AbsenceRow]:
    items = [r for r in rows if _name_matches(r.student_name, search)]
    if status and status != "all":
        items = [r for r in items if r.absence.status == status]
    if date_from:
        items = [r for r in items if r.absence.date >= date_from]
    if date_to:
        items = [r for r in items if r.absence.date <= date_to]

    if sort_key == "class_student":
        def key(r: AbsenceRow):
            s = r.student
            return (
                s.class_no if s and s.class_no is not None else 9999,
                s.student_no if s and s.student_no is not None else 9999,
                r.student_name,
            )
        return sorted(items, key=key, reverse=not asc)

    attr = sort_key if sort_key in ("date", "status", "created_at") else "date"
    return sorted(items, key=lambda r: str(getattr(r.absence, attr) or ""), reverse=not asc)


# --- Per-student calendar navigation --------------------------------------------

CALENDAR_ORDERS = ("student_no", "class")


def calendar_student_order(profiles: Iterable[Profile], order: str = "student_no") -> List[Profile]:
    """Students in browsing order: by number (then class) or by class (then number)."""
    students = [p for p in profiles if normalize_role(p.role) == STUDENT]
    if order == "class":
        key = lambda p: (_nulls_last(p.class_no), _nulls_last(p.student_no), p.name or "")  # noqa: E731
    else:
        key = lambda p: (_nulls_last(p.student_no), _nulls_last(p.class_no), p.name or "")  # noqa: E731
    return sorted(students, key=key)


def neighbours(ordered: Sequence[Profile], student_id: str) -> tuple[Optional[Profile], Optional[Profile]]:
    """Previous and next student around `student_id` in `ordered`."""
    ids = [p.id for p in ordered]
    if student_id not in ids:
        return None, None
    idx = ids.index(student_id)
    prev_p = ordered[idx - 1] if idx > 0 else None
    next_p = ordered[idx + 1] if idx + 1 < len(ordered) else None
    return prev_p, next_p
