"""
Core Module - Shared error taxonomy.

All scheduler modules raise the errors defined in cadence.core.errors so
callers can catch SchedulerError at the edge.
"""

from cadence.core.errors import (
    ConcurrencyConflict,
    NotFoundError,
    SchedulerError,
    SessionFinalizedError,
    StorageError,
    ValidationError,
)

__all__ = [
    "SchedulerError",
    "ValidationError",
    "SessionFinalizedError",
    "NotFoundError",
    "ConcurrencyConflict",
    "StorageError",
]
