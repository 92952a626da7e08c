from __future__ import annotations


class RepairJourneyError(Exception):
    """Base error for the repair journey engine."""


class SessionNotFoundError(RepairJourneyError):
    """Repair session does not exist in the relational index."""

    def __init__(self, session_id: int) -> None:
        super().__init__(f"repair session not found: {session_id}")
        self.session_id = session_id


class StoreUnavailableError(RepairJourneyError):
    """Durable object store could not be reached or rejected the call."""


class FallbackWriteError(RepairJourneyError):
    """Local fallback store could not write the payload."""


class TotalPersistenceFailureError(RepairJourneyError):
    """Both the durable store and the local fallback failed."""


class IndexWriteFailedError(RepairJourneyError):
    """Relational index write failed; the payload itself is already persisted."""


class UserNotFoundError(RepairJourneyError):
    """User record missing from the configured user store."""
