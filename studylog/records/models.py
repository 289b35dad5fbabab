"""
Record types (study events, absence requests) and input validation.

Validation messages are user-facing (Korean UI) and carried on
`ValidationError.args[0]`; `code` stays machine-readable.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Mapping, Optional

from .errors import ValidationError

BASIC = "기초 역량 강화"
CAREER = "진로 탐색"
CATEGORIES = (BASIC, CAREER)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
ABSENCE_STATUSES = (PENDING, APPROVED, REJECTED)

STATUS_LABELS = {
    PENDING: "대기",
    APPROVED: "승인",
    REJECTED: "거절",
}

_POSITIVE_INT = re.compile(r"^[1-9][0-9]*$")

TITLE_MAX = 200
DESCRIPTION_MAX = 2000
REASON_MAX = 1000


def _optional_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Event:
    id: str
    owner_id: str
    date: str  # YYYY-MM-DD
    category: str
    title: str
    duration_min: int
    description: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        return cls(
            id=str(row.get("id") or ""),
            owner_id=str(row.get("owner_id") or ""),
            date=str(row.get("date") or ""),
            category=str(row.get("category") or ""),
            title=str(row.get("title") or ""),
            duration_min=_optional_int(row.get("duration_min")) or 0,
            description=row.get("description"),
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class Absence:
    id: str
    student_id: str
    date: str
    reason: str
    status: str = PENDING
    created_at: Optional[str] = None

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, self.status)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Absence":
        return cls(
            id=str(row.get("id") or ""),
            student_id=str(row.get("student_id") or ""),
            date=str(row.get("date") or ""),
            reason=str(row.get("reason") or ""),
            status=str(row.get("status") or PENDING),
            created_at=row.get("created_at"),
        )


def _parse_iso_date(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return None


def validate_event_draft(form: Mapping[str, Any], *, day: str) -> Dict[str, Any]:
    """Return the insert payload (without owner) for a new study event."""
    title = str(form.get("title") or "").strip()
    if not title:
        raise ValidationError("title_required", "내용은 비워둘 수 없음")
    if len(title) > TITLE_MAX:
        raise ValidationError("title_too_long", "내용이 너무 깁니다")
    category = str(form.get("category") or "")
    if category not in CATEGORIES:
        raise ValidationError("invalid_category", "카테고리가 올바르지 않음")
    minutes = str(form.get("minutes") or "").strip()
    if not _POSITIVE_INT.match(minutes):
        raise ValidationError("invalid_minutes", "시간(분)은 1 이상의 자연수여야 함")
    description = str(form.get("description") or "").strip()
    if len(description) > DESCRIPTION_MAX:
        raise ValidationError("description_too_long", "설명이 너무 깁니다")
    iso_day = _parse_iso_date(day)
    if iso_day is None:
        raise ValidationError("invalid_date", "날짜가 올바르지 않음")
    return {
        "date": iso_day,
        "category": category,
        "title": title,
        "description": description or None,
        "duration_min": int(minutes),
    }


def validate_absence_draft(form: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the insert payload (without student) for a new absence request."""
    iso_day = _parse_iso_date(form.get("date"))
    if iso_day is None:
        raise ValidationError("date_required", "날짜를 선택하세요.")
    reason = str(form.get("reason") or "").strip()
    if not reason:
        raise ValidationError("reason_required", "사유를 입력하세요.")
    if len(reason) > REASON_MAX:
        raise ValidationError("reason_too_long", "사유가 너무 깁니다.")
    return {"date": iso_day, "reason": reason, "status": PENDING}


def validate_absence_status(value: Any) -> str:
    status = str(value or "").strip()
    if status not in ABSENCE_STATUSES:
        raise ValidationError("invalid_status", "상태가 올바르지 않음")
    return status
