"""Exceptions raised by the StarHabit core.

Only conditions the caller cannot branch on as normal control flow raise.
Not-found ids and invariant refusals (insufficient balance, occurrence
already complete) are returned as False/None by the managers instead.
"""

from __future__ import annotations

from typing import Any

from .const import ErrorCode


class StarHabitError(Exception):
    """Base error carrying a machine-readable code.

    Attributes:
        code: ErrorCode member identifying the failure class
        details: Optional structured context for the caller
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Any = None,
    ) -> None:
        """Initialize StarHabitError."""
        super().__init__(message)
        self.code = code
        self.details = details


class StarHabitValidationError(StarHabitError):
    """Malformed import data or admin input.

    Attributes:
        path: Location of the offending value (e.g. ["tasks", 0, "reward_value"])
    """

    def __init__(
        self,
        message: str,
        path: list[Any] | None = None,
        details: Any = None,
    ) -> None:
        """Initialize StarHabitValidationError."""
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)
        self.path = path or []


class StarHabitStorageError(StarHabitError):
    """The store could not be written to disk."""

    def __init__(self, message: str, details: Any = None) -> None:
        """Initialize StarHabitStorageError."""
        super().__init__(message, ErrorCode.STORAGE_ERROR, details)
