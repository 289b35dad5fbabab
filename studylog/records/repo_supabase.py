"""
Supabase-backed Record Store over the PostgREST tables `events` and `absences`.

Like the profile adapter it is duck-typed against a supabase client and runs
every request with the signed-in user's token; RLS scopes students to their
own rows and lets teachers read everything and update absence status.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import RecordFetchError, RecordWriteError
from .models import Absence, Event

logger = logging.getLogger("studylog.records")

EVENT_COLUMNS = "id, owner_id, title, description, category, date, duration_min, created_at"
ABSENCE_COLUMNS = "id, student_id, date, reason, status, created_at"

ClientFactory = Callable[[Optional[str]], Any]


def _rows(resp: Any) -> List[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if isinstance(data, dict):
        return [data]
    return [r for r in (data or []) if isinstance(r, dict)]


class SupabaseRecordRepo:
    def __init__(self, client_factory: ClientFactory, access_token: Optional[str] = None) -> None:
        self._factory = client_factory
        self._token = access_token
        self._client = None

    def bind(self, access_token: Optional[str]) -> "SupabaseRecordRepo":
        return SupabaseRecordRepo(self._factory, access_token)

    def _table(self, name: str):
        if self._client is None:
            self._client = self._factory(self._token)
        return self._client.table(name)

    def _read(self, build: Callable[[], Any], what: str) -> List[Dict[str, Any]]:
        try:
            resp = build().execute()
        except Exception as exc:
            logger.warning("%s query failed: %s", what, exc.__class__.__name__)
            raise RecordFetchError(f"{what}_fetch_failed") from exc
        return _rows(resp)

    def _write(self, build: Callable[[], Any], what: str) -> List[Dict[str, Any]]:
        try:
            resp = build().execute()
        except Exception as exc:
            logger.warning("%s write failed: %s", what, exc.__class__.__name__)
            raise RecordWriteError(f"{what}_write_failed") from exc
        return _rows(resp)

    # --- events -------------------------------------------------------------------

    def list_events(self, *, owner_id: str, start: str, end: str) -> List[Event]:
        rows = self._read(
            lambda: self._table("events")
            .select(EVENT_COLUMNS)
            .eq("owner_id", owner_id)
            .gte("date", start)
            .lte("date", end)
            .order("date")
            .order("created_at"),
            "events",
        )
        return [Event.from_row(r) for r in rows]

    def list_week_minutes(self, *, start: str, end: str) -> List[Dict[str, Any]]:
        return self._read(
            lambda: self._table("events")
            .select("owner_id, date, category, duration_min")
            .gte("date", start)
            .lte("date", end),
            "events",
        )

    def insert_event(self, *, owner_id: str, payload: Mapping[str, Any]) -> Event:
        body = dict(payload, owner_id=owner_id)
        rows = self._write(lambda: self._table("events").insert(body), "events")
        if not rows:
            raise RecordWriteError("events_write_failed")
        return Event.from_row(rows[0])

    def delete_event(self, *, event_id: str, owner_id: str) -> None:
        rows = self._write(
            lambda: self._table("events").delete().eq("id", event_id).eq("owner_id", owner_id),
            "events",
        )
        if not rows:
            raise RecordWriteError("event_not_found")

    # --- absences -----------------------------------------------------------------

    def list_absences(self, *, student_id: Optional[str] = None) -> List[Absence]:
        def build():
            query = self._table("absences").select(ABSENCE_COLUMNS)
            if student_id:
                query = query.eq("student_id", student_id)
            return query.order("created_at", desc=True)

        return [Absence.from_row(r) for r in self._read(build, "absences")]

    def insert_absence(self, *, student_id: str, payload: Mapping[str, Any]) -> Absence:
        body = dict(payload, student_id=student_id)
        rows = self._write(lambda: self._table("absences").insert(body), "absences")
        if not rows:
            raise RecordWriteError("absences_write_failed")
        return Absence.from_row(rows[0])

    def set_absence_status(self, *, absence_id: str, status: str) -> Absence:
        # Only the status column is written.
        rows = self._write(
            lambda: self._table("absences").update({"status": status}).eq("id", absence_id),
            "absences",
        )
        if not rows:
            raise RecordWriteError("absence_not_found")
        return Absence.from_row(rows[0])


__all__ = ["SupabaseRecordRepo"]
