"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns an in-memory session table. Designed to support the
subset of SQL used by DBSessionStore (INSERT/SELECT/UPDATE ... RETURNING/DELETE).
"""
from __future__ import annotations

from dataclasses import dataclass
import time
import types
from typing import Dict, Optional


class _FakeSQL:
    def __init__(self, template: str) -> None:
        self.template = template

    def format(self, **_parts) -> str:
        # Table and column placeholders are irrelevant for the fake.
        return self.template


@dataclass
class _Row:
    session_id: str
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    token_expires_at: int
    csrf_token: str
    expires_at: int

    def as_tuple(self):
        return (
            self.session_id,
            self.user_id,
            self.email,
            self.access_token,
            self.refresh_token,
            self.token_expires_at,
            self.csrf_token,
            self.expires_at,
        )


class _FakeCursor:
    def __init__(self, store: Dict[str, _Row], now_func) -> None:
        self._store = store
        self._row = None
        self._now = now_func

    def _live(self, sid: str) -> Optional[_Row]:
        row = self._store.get(str(sid))
        if row and row.expires_at > int(self._now()):
            return row
        return None

    def execute(self, sql, params=None):
        sql_low = str(sql or "").lower().strip()
        if sql_low.startswith("insert into"):
            sid, user_id, email, access, refresh, token_exp, csrf, expires_at = params
            self._store[sid] = _Row(sid, user_id, email, access, refresh, int(token_exp), csrf, int(expires_at))
            self._row = None
        elif sql_low.startswith("select"):
            row = self._live(params[0])
            self._row = row.as_tuple() if row else None
        elif sql_low.startswith("update"):
            access, refresh, token_exp, sid = params
            row = self._live(sid)
            if row is not None:
                row.access_token = access
                row.refresh_token = refresh
                row.token_expires_at = int(token_exp)
            self._row = row.as_tuple() if row else None
        elif sql_low.startswith("delete"):
            self._store.pop(str(params[0]), None)
            self._row = None
        else:
            raise AssertionError(f"Unexpected SQL in fake psycopg: {sql}")

    def fetchone(self):
        return self._row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, store: Dict[str, _Row], now_func) -> None:
        self._store = store
        self._now = now_func

    def cursor(self):
        return _FakeCursor(self._store, self._now)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module, now_func=time.time):
    """
    Patch ``target_module`` so psycopg operations go against an in-memory store.

    Returns the mutable dictionary acting as the backing table.
    """
    fake_store: Dict[str, _Row] = {}

    def fake_connect(dsn: str, autocommit: bool | None = None):
        return _FakeConn(fake_store, now_func)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect)
    fake_sql = types.SimpleNamespace(
        SQL=_FakeSQL,
        Identifier=lambda *parts: ".".join(parts),
    )

    monkeypatch.setattr(target_module, "HAVE_PSYCOPG", True, raising=False)
    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    monkeypatch.setattr(target_module, "sql", fake_sql, raising=False)
    monkeypatch.setattr(target_module, "_now", lambda: int(now_func()), raising=False)
    return fake_store


__all__ = ["install_fake_psycopg"]
