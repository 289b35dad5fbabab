"""Error taxonomy for identity and profile access."""

from __future__ import annotations


class IdentityError(Exception):
    """Base class; `code` is a short machine-readable reason."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code


class SessionFetchError(IdentityError):
    """The session lookup or token refresh failed."""


class ProfileFetchError(IdentityError):
    """The profile store returned an error for a profile lookup."""


class ProfileWriteError(IdentityError):
    """A profile update was rejected or failed; stored state is unchanged."""


class ProfileValidationError(IdentityError):
    """User input for a profile update is invalid."""
