"""Errors raised by the enquiry level tracker."""

from __future__ import annotations

from typing import Dict


class LevelError(Exception):
    """Base class for level tracking failures surfaced to callers."""


class ValidationError(LevelError, ValueError):
    """Malformed input such as an out-of-range level or blank notes."""

    def __init__(self, message: str, details: Dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MissingNotes(ValidationError):
    """A level change was requested without a justification."""

    def __init__(self, message: str = "Notes are required when changing enquiry level.") -> None:
        super().__init__(message, {"notes": message})


class InvalidTransition(LevelError):
    """A well-formed but semantically illegal level change."""

    def __init__(self, reason: str, current_level: int, requested_level: int) -> None:
        super().__init__(reason)
        self.reason = reason
        self.current_level = current_level
        self.requested_level = requested_level


class NotFound(LevelError, LookupError):
    """The referenced student does not exist."""

    def __init__(self, student_id: str) -> None:
        super().__init__(f"Student {student_id!r} not found.")
        self.student_id = student_id


class StaleLedger(LevelError):
    """The student's level history changed between reading and writing it."""

    def __init__(self, student_id: str) -> None:
        super().__init__("Level history changed while recording this change; please retry.")
        self.student_id = student_id


class DataIntegrityWarning(UserWarning):
    """current_level disagrees with the last level_history entry.

    Never raised: logged, and the ledger's value is used instead.
    """


__all__ = [
    "DataIntegrityWarning",
    "InvalidTransition",
    "LevelError",
    "MissingNotes",
    "NotFound",
    "StaleLedger",
    "ValidationError",
]
