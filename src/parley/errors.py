"""Exception types."""

from __future__ import annotations


class ParleyError(RuntimeError):
    pass


class StorageError(ParleyError):
    """Persisted state could not be read or written."""


class StorageQuotaExceeded(StorageError):
    """The backend refused a write for lack of space."""


class InvariantViolation(ParleyError):
    """In-memory session state broke one of its structural rules."""
