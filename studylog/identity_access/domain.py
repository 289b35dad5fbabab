"""
Identity domain types and constants.

Why:
- Centralize allowed roles and role home views to avoid drift between the
  gate, the web layer and the Supabase adapters.
- Keep terms aligned with the glossary: a Session proves identity, a Profile
  carries authorization (`role`, `approved`) and personal attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

STUDENT = "student"
TEACHER = "teacher"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({STUDENT, TEACHER})

# Home view per role; role mismatches redirect here.
ROLE_HOME = {
    TEACHER: "/teacher/students",
    STUDENT: "/student/calendar",
}

LOGIN_PATH = "/login"
PENDING_PATH = "/pending"

# Columns selected from the `profiles` table for the gate.
PROFILE_COLUMNS = "id, role, approved, name, grade, class_no, student_no"

# Columns a user may change on their own profile. `role` and `approved` are
# privileged and must never be part of a self-service update.
SELF_EDITABLE_FIELDS = frozenset({"name", "grade", "class_no", "student_no"})


def normalize_role(value: Any) -> str:
    """Return a known role; missing or unknown values read as `student`."""
    role = str(value or "").strip().lower()
    return role if role in ALLOWED_ROLES else STUDENT


def role_home(role: str) -> str:
    return ROLE_HOME[normalize_role(role)]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Session:
    """Proof of identity issued by the identity provider.

    Instances are never mutated: a token refresh yields a new Session with the
    same `session_id`.
    """

    session_id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: int

    @property
    def identity_id(self) -> str:
        return self.user_id

    def is_expired(self, now: float, leeway: int = 0) -> bool:
        return self.expires_at <= now + leeway


@dataclass(frozen=True)
class Profile:
    """Authorization record (role, approval) and personal data of one identity."""

    id: str
    role: str = STUDENT
    approved: bool = False
    name: Optional[str] = None
    grade: Optional[int] = None
    class_no: Optional[int] = None
    student_no: Optional[int] = None
    is_hidden: bool = False
    created_at: Optional[str] = None
    role_updated_by: Optional[str] = None
    role_updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(row.get("id") or ""),
            role=normalize_role(row.get("role")),
            approved=bool(row.get("approved")),
            name=row.get("name"),
            grade=_optional_int(row.get("grade")),
            class_no=_optional_int(row.get("class_no")),
            student_no=_optional_int(row.get("student_no")),
            is_hidden=bool(row.get("is_hidden")),
            created_at=row.get("created_at"),
            role_updated_by=row.get("role_updated_by"),
            role_updated_at=row.get("role_updated_at"),
        )

    def with_changes(self, **fields: Any) -> "Profile":
        return replace(self, **fields)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "approved": self.approved,
            "name": self.name,
            "grade": self.grade,
            "class_no": self.class_no,
            "student_no": self.student_no,
        }


__all__ = [
    "ALLOWED_ROLES",
    "LOGIN_PATH",
    "PENDING_PATH",
    "PROFILE_COLUMNS",
    "Profile",
    "ROLE_HOME",
    "SELF_EDITABLE_FIELDS",
    "STUDENT",
    "Session",
    "TEACHER",
    "normalize_role",
    "role_home",
]
