"""
Scheduler error taxonomy.

- ValidationError: caller contract violated (bad rating, finalized session)
- NotFoundError: card or session id does not resolve for the owner
- ConcurrencyConflict: optimistic version mismatch, retry the whole review
- StorageError: persistence failure, retryable with backoff

An empty pool is never an error.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for all scheduler errors."""
    pass


class ValidationError(SchedulerError):
    """Raised when input violates the caller contract."""
    pass


class SessionFinalizedError(ValidationError):
    """Raised when mutating a session that is already completed or abandoned."""

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is already {status}")
        self.session_id = session_id
        self.status = status


class NotFoundError(SchedulerError):
    """Raised when a card or session id is unresolved."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConcurrencyConflict(SchedulerError):
    """Raised when a card changed between read and write."""

    def __init__(self, card_id: str, expected_version: int):
        super().__init__(
            f"Card {card_id} was modified concurrently (expected version {expected_version})"
        )
        self.card_id = card_id
        self.expected_version = expected_version


class StorageError(SchedulerError):
    """Raised when the persistence layer fails."""
    pass
