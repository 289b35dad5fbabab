"""
AccessGate: decide whether a protected view renders or redirects.

The decision is a pure function of the cached session, the cached profile and
the role a view requires. It performs no I/O; fetching and caching belong to
`identity_access.freshness`.

Rules (first match wins):
    1. no session              -> login
    2. no profile              -> login (a missing profile is unrecoverable
                                  on the client and treated as signed out)
    3. profile not approved    -> pending-approval
    4. role required, mismatch -> home view of the profile's role
    5. otherwise               -> render
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .domain import LOGIN_PATH, PENDING_PATH, Profile, Session, normalize_role, role_home

RENDER = "render"
LOGIN = "login"
PENDING_APPROVAL = "pending-approval"
ROLE_HOME = "role-home"


@dataclass(frozen=True)
class GateDecision:
    kind: str
    location: Optional[str] = None
    role: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.kind == RENDER

    def as_dict(self) -> dict:
        body: dict = {"decision": self.kind}
        if self.location:
            body["location"] = self.location
        if self.role:
            body["role"] = self.role
        return body


_RENDER = GateDecision(RENDER)
_LOGIN = GateDecision(LOGIN, location=LOGIN_PATH)
_PENDING = GateDecision(PENDING_APPROVAL, location=PENDING_PATH)


def decide(session: Optional[Session], profile: Optional[Profile], required_role: Optional[str] = None) -> GateDecision:
    """Return the gate decision for a view requiring `required_role` (or any role)."""
    if session is None:
        return _LOGIN
    if profile is None:
        return _LOGIN
    if not profile.approved:
        return _PENDING
    role = normalize_role(profile.role)
    if required_role and role != required_role:
        return GateDecision(ROLE_HOME, location=role_home(role), role=role)
    return _RENDER


__all__ = ["GateDecision", "LOGIN", "PENDING_APPROVAL", "RENDER", "ROLE_HOME", "decide"]
