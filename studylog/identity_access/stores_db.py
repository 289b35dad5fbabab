"""
Database-backed SessionStore for production use (Postgres/Supabase).

Why: In-memory sessions are not durable and do not survive restarts or span
several workers. This store persists the server session, including the GoTrue
token pair, in Postgres while the cookie stays an opaque id.

Security:
- Use a service role connection string; the anon role must not read
  `app_sessions` (RLS enabled, no policies).
- Tokens never leave the server.

Expected table::

    create table public.app_sessions (
        session_id text primary key,
        user_id uuid not null,
        email text not null default '',
        access_token text not null,
        refresh_token text not null,
        token_expires_at timestamptz not null,
        csrf_token text not null,
        expires_at timestamptz not null
    );

Note: This module uses psycopg3. It is imported only when enabled via
`SESSIONS_BACKEND=db`; tests use the in-memory store or a fake psycopg.
"""
from __future__ import annotations

from typing import Optional
import os
import re
import secrets
import time

try:
    import psycopg
    from psycopg import sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    sql = None  # type: ignore
    HAVE_PSYCOPG = False

from .stores import SessionRecord

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")

_COLUMNS = (
    "session_id, user_id::text, email, access_token, refresh_token, "
    "extract(epoch from token_expires_at)::bigint, csrf_token, extract(epoch from expires_at)::bigint"
)


def _now() -> int:
    return int(time.time())


def _row_to_record(row) -> SessionRecord:
    return SessionRecord(
        session_id=row[0],
        user_id=row[1],
        email=row[2] or "",
        access_token=row[3],
        refresh_token=row[4],
        token_expires_at=int(row[5]) if row[5] is not None else 0,
        csrf_token=row[6] or "",
        expires_at=int(row[7]) if row[7] is not None else None,
    )


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        schema, _, name = table.rpartition(".")
        self._table = sql.Identifier(schema or "public", name)

    def _stmt(self, template: str):
        return sql.SQL(template).format(table=self._table, columns=sql.SQL(_COLUMNS))

    def create(
        self,
        *,
        user_id: str,
        email: str,
        access_token: str,
        refresh_token: str,
        token_expires_at: int,
        ttl_seconds: int = 604800,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        csrf = secrets.token_urlsafe(32)
        expires_at = _now() + ttl_seconds
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt(
                        "insert into {table} (session_id, user_id, email, access_token, refresh_token, "
                        "token_expires_at, csrf_token, expires_at) "
                        "values (%s, %s, %s, %s, %s, to_timestamp(%s), %s, to_timestamp(%s))"
                    ),
                    (sid, user_id, email, access_token, refresh_token, token_expires_at, csrf, expires_at),
                )
        return SessionRecord(
            session_id=sid,
            user_id=user_id,
            email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            expires_at=expires_at,
            csrf_token=csrf,
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt("select {columns} from {table} where session_id = %s and expires_at > now()"),
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return _row_to_record(row)

    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: str,
        refresh_token: str,
        token_expires_at: int,
    ) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt(
                        "update {table} set access_token = %s, refresh_token = %s, "
                        "token_expires_at = to_timestamp(%s) "
                        "where session_id = %s and expires_at > now() returning {columns}"
                    ),
                    (access_token, refresh_token, token_expires_at, session_id),
                )
                row = cur.fetchone()
        if not row:
            return None
        return _row_to_record(row)

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(self._stmt("delete from {table} where session_id = %s"), (session_id,))
