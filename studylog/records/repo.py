"""
Record Store port (study events, absence requests) and its in-memory version.

Row ownership (`owner_id`, `student_id`) is checked by the Supabase policies
in production; the in-memory store mirrors the owner filter on deletes so the
web layer behaves the same against both.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol
from uuid import uuid4

from .errors import RecordWriteError
from .models import Absence, Event


class RecordRepoProtocol(Protocol):
    def bind(self, access_token: Optional[str]) -> "RecordRepoProtocol": ...

    def list_events(self, *, owner_id: str, start: str, end: str) -> List[Event]: ...

    def list_week_minutes(self, *, start: str, end: str) -> List[Dict[str, Any]]: ...

    def insert_event(self, *, owner_id: str, payload: Mapping[str, Any]) -> Event: ...

    def delete_event(self, *, event_id: str, owner_id: str) -> None: ...

    def list_absences(self, *, student_id: Optional[str] = None) -> List[Absence]: ...

    def insert_absence(self, *, student_id: str, payload: Mapping[str, Any]) -> Absence: ...

    def set_absence_status(self, *, absence_id: str, status: str) -> Absence: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryRecordRepo:
    def __init__(self) -> None:
        self.events: Dict[str, Event] = {}
        self.absences: Dict[str, Absence] = {}

    def bind(self, access_token: Optional[str]) -> "InMemoryRecordRepo":
        return self

    # --- events -------------------------------------------------------------------

    def list_events(self, *, owner_id: str, start: str, end: str) -> List[Event]:
        items = [e for e in self.events.values() if e.owner_id == owner_id and start <= e.date <= end]
        items.sort(key=lambda e: (e.date, e.created_at or ""))
        return items

    def list_week_minutes(self, *, start: str, end: str) -> List[Dict[str, Any]]:
        return [
            {"owner_id": e.owner_id, "date": e.date, "category": e.category, "duration_min": e.duration_min}
            for e in self.events.values()
            if start <= e.date <= end
        ]

    def insert_event(self, *, owner_id: str, payload: Mapping[str, Any]) -> Event:
        event = Event(
            id=str(uuid4()),
            owner_id=owner_id,
            date=payload["date"],
            category=payload["category"],
            title=payload["title"],
            duration_min=int(payload["duration_min"]),
            description=payload.get("description"),
            created_at=_now_iso(),
        )
        self.events[event.id] = event
        return event

    def delete_event(self, *, event_id: str, owner_id: str) -> None:
        event = self.events.get(event_id)
        if event is None or event.owner_id != owner_id:
            raise RecordWriteError("event_not_found")
        del self.events[event_id]

    # --- absences -----------------------------------------------------------------

    def list_absences(self, *, student_id: Optional[str] = None) -> List[Absence]:
        items = [a for a in self.absences.values() if student_id is None or a.student_id == student_id]
        items.sort(key=lambda a: a.created_at or "", reverse=True)
        return items

    def insert_absence(self, *, student_id: str, payload: Mapping[str, Any]) -> Absence:
        absence = Absence(
            id=str(uuid4()),
            student_id=student_id,
            date=payload["date"],
            reason=payload["reason"],
            status=payload.get("status") or "pending",
            created_at=_now_iso(),
        )
        self.absences[absence.id] = absence
        return absence

    def set_absence_status(self, *, absence_id: str, status: str) -> Absence:
        absence = self.absences.get(absence_id)
        if absence is None:
            raise RecordWriteError("absence_not_found")
        updated = replace(absence, status=status)
        self.absences[absence_id] = updated
        return updated


__all__ = ["InMemoryRecordRepo", "RecordRepoProtocol"]
