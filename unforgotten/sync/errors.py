"""Sync error taxonomy.

Each error's ``str()`` is the human-readable message shown in a
``failed(message)`` status.
"""

from __future__ import annotations

import uuid


class SyncError(Exception):
    """Base class for every error the sync engine raises on purpose."""


class NotAuthenticatedError(SyncError):
    """No signed-in session, or the backend rejected the session."""

    def __init__(self, message: str = "You must be signed in to sync") -> None:
        super().__init__(message)


class NetworkUnavailableError(SyncError):
    """The backend could not be reached. Transient."""

    def __init__(self, message: str = "No internet connection") -> None:
        super().__init__(message)


class ServerError(SyncError):
    """The backend answered with an error."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Server error: {detail}")


class ConflictDetectedError(SyncError):
    """Reserved for a future conflict policy. Never raised today."""

    def __init__(self, entity_id: uuid.UUID) -> None:
        self.entity_id = entity_id
        super().__init__(f"Conflict detected for item {str(entity_id)[:8]}")


class DataCorruptionError(SyncError):
    """A stored or received record could not be decoded."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Data error: {detail}")
