"""
Profile Store port, in-memory implementation and the privileged writers.

Why:
- The gate only needs `get_profile`; the teacher pages need listing and the
  approval/role writers. Both go through one protocol so the Supabase adapter
  and the in-memory store are interchangeable (tests, local dev).
- Authorization of writers is enforced by the store (row level security in
  Supabase). The web layer only gates the teacher views that offer them.

Writers are single-row conditional updates. A failure raises
`ProfileWriteError` and leaves the stored row unchanged; nothing is retried.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .domain import STUDENT, TEACHER, Profile, normalize_role
from .errors import ProfileValidationError, ProfileWriteError


class ProfileStoreProtocol(Protocol):
    """Profile Store operations used by the gate and the web layer."""

    def bind(self, access_token: Optional[str]) -> "ProfileStoreProtocol": ...

    def get_profile(self, identity_id: str) -> Optional[Profile]: ...

    def update_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile: ...

    def list_profiles(self, *, role: Optional[str] = None) -> List[Profile]: ...

    def list_by_ids(self, ids: Sequence[str]) -> List[Profile]: ...

    def set_approved(self, ids: Sequence[str], approved: bool, *, only_pending: bool = False) -> List[Profile]: ...

    def set_role(self, identity_id: str, role: str, *, approved: Optional[bool], actor_id: Optional[str]) -> Profile: ...

    def set_hidden(self, identity_id: str, hidden: bool = True) -> Profile: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryProfileStore:
    """Dict-backed store with the same semantics as the Supabase adapter.

    No row level security here: every caller may write. Tests use it to drive
    the web layer and the freshness protocol without network access.
    """

    def __init__(self, profiles: Iterable[Profile] = ()) -> None:
        self.rows: Dict[str, Profile] = {p.id: p for p in profiles}

    def bind(self, access_token: Optional[str]) -> "InMemoryProfileStore":
        return self

    def put(self, profile: Profile) -> Profile:
        self.rows[profile.id] = profile
        return profile

    def get_profile(self, identity_id: str) -> Optional[Profile]:
        return self.rows.get(identity_id)

    def _require(self, identity_id: str) -> Profile:
        profile = self.rows.get(identity_id)
        if profile is None:
            raise ProfileWriteError("profile_not_found")
        return profile

    def update_profile(self, identity_id: str, fields: Mapping[str, Any]) -> Profile:
        updated = self._require(identity_id).with_changes(**dict(fields))
        self.rows[identity_id] = updated
        return updated

    def list_profiles(self, *, role: Optional[str] = None) -> List[Profile]:
        items = list(self.rows.values())
        if role:
            items = [p for p in items if normalize_role(p.role) == role]
        items.sort(key=lambda p: p.created_at or "", reverse=True)
        return items

    def list_by_ids(self, ids: Sequence[str]) -> List[Profile]:
        return [self.rows[i] for i in dict.fromkeys(ids) if i in self.rows]

    def set_approved(self, ids: Sequence[str], approved: bool, *, only_pending: bool = False) -> List[Profile]:
        changed: List[Profile] = []
        for pid in dict.fromkeys(ids):
            profile = self.rows.get(pid)
            if profile is None:
                continue
            if only_pending and (profile.approved or profile.is_hidden):
                continue
            updated = profile.with_changes(approved=approved)
            self.rows[pid] = updated
            changed.append(updated)
        return changed

    def set_role(self, identity_id: str, role: str, *, approved: Optional[bool], actor_id: Optional[str]) -> Profile:
        fields: Dict[str, Any] = {"role": role, "role_updated_by": actor_id, "role_updated_at": _now_iso()}
        if approved is not None:
            fields["approved"] = approved
        return self.update_profile(identity_id, fields)

    def set_hidden(self, identity_id: str, hidden: bool = True) -> Profile:
        return self.update_profile(identity_id, {"is_hidden": hidden})


# --- Writers --------------------------------------------------------------------

def _single(rows: List[Profile]) -> Profile:
    if len(rows) != 1:
        raise ProfileWriteError("profile_not_updated")
    return rows[0]


def approve(store: ProfileStoreProtocol, profile_id: str) -> Profile:
    return _single(store.set_approved([profile_id], True))


def revoke(store: ProfileStoreProtocol, profile_id: str) -> Profile:
    """Withdraw approval; the student is sent back to the pending screen."""
    return _single(store.set_approved([profile_id], False))


def approve_all(store: ProfileStoreProtocol, profile_ids: Sequence[str]) -> List[Profile]:
    """Approve every listed profile that is still pending and not hidden."""
    if not profile_ids:
        return []
    return store.set_approved(profile_ids, True, only_pending=True)


def grant_role(store: ProfileStoreProtocol, profile_id: str, new_role: str, actor_id: Optional[str]) -> Profile:
    role = (new_role or "").strip().lower()
    if role not in (STUDENT, TEACHER):
        raise ProfileValidationError("invalid_role")
    # Granting the teacher role also approves the account.
    approved = True if role == TEACHER else None
    return store.set_role(profile_id, role, approved=approved, actor_id=actor_id)


def revoke_role(store: ProfileStoreProtocol, profile_id: str, actor_id: Optional[str]) -> Profile:
    """Demote a teacher to student; the audit columns mark the row as revoked."""
    if actor_id and actor_id == profile_id:
        raise ProfileValidationError("cannot_revoke_self")
    return store.set_role(profile_id, STUDENT, approved=None, actor_id=actor_id)


def hide(store: ProfileStoreProtocol, profile_id: str) -> Profile:
    return store.set_hidden(profile_id, True)


# --- Self-service ---------------------------------------------------------------

def _parse_non_negative(value: Any, field: str) -> Optional[int]:
    text = str(value if value is not None else "").strip()
    if not text:
        return None
    if not text.isdigit():
        raise ProfileValidationError(f"invalid_{field}")
    return int(text)


def validate_own_profile_fields(form: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the sanitized payload of a self-service profile update.

    Only `SELF_EDITABLE_FIELDS` are read; `role` and `approved` in the input
    are ignored.
    """
    name = str(form.get("name") or "").strip()
    if not name:
        raise ProfileValidationError("name_required")
    if len(name) > 50:
        raise ProfileValidationError("name_too_long")
    payload: Dict[str, Any] = {"name": name}
    for field in ("grade", "class_no", "student_no"):
        payload[field] = _parse_non_negative(form.get(field), field)
    return payload


def update_own_profile(store: ProfileStoreProtocol, identity_id: str, form: Mapping[str, Any]) -> Profile:
    return store.update_profile(identity_id, validate_own_profile_fields(form))


__all__ = [
    "InMemoryProfileStore",
    "ProfileStoreProtocol",
    "approve",
    "approve_all",
    "grant_role",
    "hide",
    "revoke",
    "revoke_role",
    "update_own_profile",
    "validate_own_profile_fields",
]
