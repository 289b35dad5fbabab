"""Validation of study event and absence drafts."""
import pytest

from studylog.records.errors import ValidationError
from studylog.records.models import (
    BASIC,
    Absence,
    Event,
    validate_absence_draft,
    validate_absence_status,
    validate_event_draft,
)


def _form(**overrides):
    form = {"title": "수학 문제집", "category": BASIC, "minutes": "45", "description": ""}
    form.update(overrides)
    return form


def test_valid_event_draft_is_normalized():
    payload = validate_event_draft(_form(title="  수학  "), day="2026-10-14")
    assert payload == {
        "date": "2026-10-14",
        "category": BASIC,
        "title": "수학",
        "description": None,
        "duration_min": 45,
    }


@pytest.mark.parametrize(
    "overrides,code",
    [
        ({"title": "   "}, "title_required"),
        ({"category": "기타"}, "invalid_category"),
        ({"minutes": "0"}, "invalid_minutes"),
        ({"minutes": "1.5"}, "invalid_minutes"),
        ({"minutes": "-10"}, "invalid_minutes"),
        ({"minutes": ""}, "invalid_minutes"),
    ],
)
def test_invalid_event_drafts_are_rejected(overrides, code):
    with pytest.raises(ValidationError) as exc:
        validate_event_draft(_form(**overrides), day="2026-10-14")
    assert exc.value.code == code


def test_event_draft_requires_a_real_date():
    with pytest.raises(ValidationError) as exc:
        validate_event_draft(_form(), day="2026-02-30")
    assert exc.value.code == "invalid_date"


def test_absence_draft_starts_pending():
    payload = validate_absence_draft({"date": "2026-10-15", "reason": " 병원 "})
    assert payload == {"date": "2026-10-15", "reason": "병원", "status": "pending"}


@pytest.mark.parametrize(
    "form,code",
    [({"date": "", "reason": "x"}, "date_required"), ({"date": "2026-10-15", "reason": " "}, "reason_required")],
)
def test_invalid_absence_drafts_are_rejected(form, code):
    with pytest.raises(ValidationError) as exc:
        validate_absence_draft(form)
    assert exc.value.code == code


def test_absence_status_must_be_known():
    assert validate_absence_status("approved") == "approved"
    with pytest.raises(ValidationError):
        validate_absence_status("done")


def test_rows_map_to_models():
    event = Event.from_row(
        {"id": 1, "owner_id": "s1", "date": "2026-10-14", "category": BASIC, "title": "t", "duration_min": "30"}
    )
    assert event.id == "1" and event.duration_min == 30
    absence = Absence.from_row({"id": "a1", "student_id": "s1", "date": "2026-10-14", "reason": "r"})
    assert absence.status == "pending"
    assert absence.status_label == "대기"
