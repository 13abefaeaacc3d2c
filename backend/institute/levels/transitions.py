"""Admissibility rules for enquiry level changes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import InvalidTransition, MissingNotes, ValidationError

MIN_LEVEL = 1
MAX_LEVEL = 5
ADMITTED_LEVEL = MAX_LEVEL

LEVEL_LABELS = {
    1: "Initial Enquiry",
    2: "Prospectus Purchased",
    3: "Prospectus Returned",
    4: "Admission Fee Submitted",
    5: "Admitted",
}


@dataclass(frozen=True)
class TransitionDecision:
    current_level: int
    requested_level: int
    notes: str
    is_regression: bool = False
    previous_level: int | None = None
    reason: str | None = None


def is_valid_level(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and MIN_LEVEL <= value <= MAX_LEVEL
    )


def coerce_level(value: Any, *, field: str = "level") -> int:
    """Return ``value`` as an int level in range or raise ValidationError."""

    if isinstance(value, bool):
        level = None
    elif isinstance(value, int):
        level = value
    elif isinstance(value, float) and value.is_integer():
        level = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        level = int(value.strip())
    else:
        level = None

    if level is None or not is_valid_level(level):
        message = f"{field} must be an integer between {MIN_LEVEL} and {MAX_LEVEL}."
        raise ValidationError(message, {field: message})
    return level


def _clean_notes(notes: Any) -> str:
    cleaned = str(notes).strip() if notes is not None else ""
    if not cleaned:
        raise MissingNotes()
    return cleaned


def validate(current_level: int, requested_level: int, notes: Any) -> TransitionDecision:
    """Check a standard (forward) level change."""

    current = coerce_level(current_level, field="current_level")
    requested = coerce_level(requested_level)
    cleaned_notes = _clean_notes(notes)

    if requested == current:
        raise InvalidTransition(
            f"Student is already at level {requested}.", current, requested
        )
    if requested < current:
        raise InvalidTransition(
            f"Cannot downgrade from level {current} to level {requested}. "
            "Downgrade not allowed without a regression reason.",
            current,
            requested,
        )

    return TransitionDecision(
        current_level=current, requested_level=requested, notes=cleaned_notes
    )


def validate_regression(
    current_level: int, requested_level: int, notes: Any, reason: Any
) -> TransitionDecision:
    """Check an explicit downgrade, which needs both notes and a reason."""

    current = coerce_level(current_level, field="current_level")
    requested = coerce_level(requested_level)
    cleaned_notes = _clean_notes(notes)

    cleaned_reason = str(reason).strip() if reason is not None else ""
    if not cleaned_reason:
        message = "A reason is required to lower a student's level."
        raise ValidationError(message, {"regression_reason": message})

    if requested >= current:
        raise InvalidTransition(
            f"Level {requested} is not below the current level {current}; "
            "use a standard level change instead.",
            current,
            requested,
        )

    return TransitionDecision(
        current_level=current,
        requested_level=requested,
        notes=cleaned_notes,
        is_regression=True,
        previous_level=current,
        reason=cleaned_reason,
    )


__all__ = [
    "ADMITTED_LEVEL",
    "LEVEL_LABELS",
    "MAX_LEVEL",
    "MIN_LEVEL",
    "TransitionDecision",
    "coerce_level",
    "is_valid_level",
    "validate",
    "validate_regression",
]
