"""Errors raised by the record store and its validators."""

from __future__ import annotations


class RecordError(Exception):
    """Base class; `code` is a short machine-readable reason."""

    def __init__(self, code: str, message: str | None = None):
        super().__init__(message or code)
        self.code = code


class RecordFetchError(RecordError):
    """A query against the record store failed."""


class RecordWriteError(RecordError):
    """An insert, update or delete was rejected or failed."""


class ValidationError(RecordError):
    """User input for a record is invalid; `message` is shown to the user."""
