"""Failure taxonomy shared by the store adapters and the reconciliation engine.

    Unreachable      — remote transport/service unavailable (retryable)
    ValidationError  — store rejected the record content
    NotFound         — referenced identifier no longer exists
    DuplicateKey     — local insert collided with an existing local id
    StoreClosed      — store used outside its open -> ready window
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every store and reconciliation failure."""

    retryable: bool = False


class Unreachable(SyncError):
    """The remote store could not be reached or did not answer in time."""

    retryable = True


class ValidationError(SyncError):
    """The store rejected a record's content (empty name, age out of range, ...)."""


class NotFound(SyncError):
    """The referenced record does not exist (any more)."""


class DuplicateKey(SyncError):
    """A local insert reused an identifier already present in the local store."""


class StoreClosed(SyncError):
    """An operation was attempted on a store that is not open."""
