"""
Supabase-backed Profile Store (PostgREST table `public.profiles`).

The adapter is duck-typed against the client returned by
`supabase.create_client(...)`: it only uses `.table(name)` query builders
(`select/eq/in_/order/limit/update/execute`). Every request runs with the
signed-in user's access token, so row level security decides what a caller
may read or write.

Expected policies (summary):
- a user reads and updates their own row, except `role` and `approved`
- teachers read all rows and update `approved`, `role`, `is_hidden` and the
  role audit columns
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .domain import PROFILE_COLUMNS, Profile
from .errors import ProfileFetchError, ProfileWriteError

logger = logging.getLogger("studylog.identity_access")

TABLE = "profiles"
LIST_COLUMNS = (
    "id, role, approved, name, grade, class_no, student_no, is_hidden, "
    "created_at, role_updated_by, role_updated_at"
)

ClientFactory = Callable[[Optional[str]], Any]


def _rows(resp: Any) -> List[Dict[str, Any]]:
    data = getattr(resp, "data", None)
    if data is None and isinstance(resp, dict):
        data = resp.get("data")
    if isinstance(data, dict):
        return [data]
    return [r for r in (data or []) if isinstance(r, dict)]


class SupabaseProfileStore:
    """Profile Store over PostgREST.

    Parameters
    ----------
    client_factory:
        Callable returning a supabase client authorized with the given access
        token (or the anon key when None).
    access_token:
        Token of the user on whose behalf requests are made.
    """

    def __init__(self, client_factory: ClientFactory, access_token: Optional[str] = None) -> None:
        self._factory = client_factory
        self._token = access_token
        self._client = None

    def bind(self, access_token: Optional[str]) -> "SupabaseProfileStore":
        return SupabaseProfileStore(self._factory, access_token)

    def _table(self):
        if self._client is None:
            self._client = self._factory(self._token)
        return self._client.table(TABLE)

    # --- reads --------------------------------------------------------------------

    def get_profile(self, identity_id: str) -> Optional[Profile]:
        try:
            resp = self._table().select(PROFILE_COLUMNS).eq("id", identity_id).limit(1).execute()
        except Exception as exc:
            logger.warning("Profile lookup failed: %s", exc.__class__.__name__)
            raise ProfileFetchError("profile_fetch_failed") from exc
        rows = _rows(resp)
        return Profile.from_row(rows[0]) if rows else None

    def list_profiles(self, *, role: Optional[str] = None) -> List[Profile]:
        try:
            query = self._table().select(LIST_COLUMNS)
            if role:
                query = query.eq("role", role)
            resp = query.order("created_at", desc=True).execute()
        except Exception as exc:
            logger.warning("Profile listing failed: %s", exc.__class__.__name__)
            raise ProfileFetchError("profile_list_failed") from exc
        return [Profile.from_row(r) for r in _rows(resp)]

    def list_by_ids(self, ids: Sequence[str]) -> List[Profile]:
        unique = list(dict.fromkeys(i for i in ids if i))
        if not unique:
            return []
        try:
            resp = self._table().select(LIST_COLUMNS).in_("id", unique).execute()
        except Exception as exc:
            logger.warning("Profile listing failed: %s", exc.__class__.__name__)
            raise ProfileFetchError("profile_list_failed") from exc
        return [Profile.from_row(r) for r in _rows(resp)]

    # --- writes -------------------------------------------------------------------

    def _update(self, payload: Mapping[str, Any], *, ids: Sequence[str], only_pending: bool = False) -> List[Profile]:
        try:
            query = self._table().update(dict(payload))
            if len(ids) == 1:
                query = query.eq("id", ids[0])
            else:
                query = query.in_("id", list(ids))
            if only_pending:
                query = query.eq("approved", False).eq("is_hidden", False)
            resp = query.execute()
        except Exception as exc:
            logger.warning("Profile update failed: %s", exc.__class__.__name__)
            raise ProfileWriteError("profile_update_failed") from exc
        return [Profile.from_row(r) for r in _rows(resp)]

    def update_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile:
        rows = self._update(fields, ids=[identity_id])
        if not rows:
            # RLS filtered the row out: nothing was written.
            raise ProfileWriteError("profile_not_updated")
        return rows[0]

    def set_approved(self, ids: Sequence[str], approved: bool, *, only_pending: bool = False) -> List[Profile]:
        unique = list(dict.fromkeys(i for i in ids if i))
        if not unique:
            return []
        return self._update({"approved": approved}, ids=unique, only_pending=only_pending)

    def set_role(self, identity_id: str, role: str, *, approved: Optional[bool], actor_id: Optional[str]) -> Profile:
        payload: Dict[str, Any] = {
            "role": role,
            "role_updated_by": actor_id,
            "role_updated_at": datetime.now(timezone.utc).isoformat(),
        }
        if approved is not None:
            payload["approved"] = approved
        return self.update_profile(identity_id, payload)

    def set_hidden(self, identity_id: str, hidden: bool = True) -> Profile:
        return self.update_profile(identity_id, {"is_hidden": hidden})


__all__ = ["SupabaseProfileStore"]
