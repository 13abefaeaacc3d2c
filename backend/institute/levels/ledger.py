"""Append-only level history kept on each student document.

The ledger lives in the ``level_history`` array of a student document.
Helpers here work on the in-memory document; persisting the change is the
caller's job (see :mod:`institute.services.enquiries`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, MutableMapping

from .errors import DataIntegrityWarning, ValidationError
from .transitions import MIN_LEVEL, coerce_level, is_valid_level

logger = logging.getLogger(__name__)

BACKFILL_ACTOR_LABEL = "Migration"


@dataclass(frozen=True)
class Actor:
    """Staff member recording a change, taken from the request session."""

    id: str
    name: str
    role: str | None = None


@dataclass(frozen=True)
class LevelEvent:
    level: int
    achieved_on: datetime
    actor_id: str | None = None
    actor_name: str | None = None
    is_regression: bool = False
    previous_level: int | None = None
    reason: str | None = None
    notes: str | None = None

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "level": self.level,
            "achieved_on": self.achieved_on,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "is_regression": self.is_regression,
        }
        if self.is_regression:
            document["previous_level"] = self.previous_level
        if self.reason:
            document["reason"] = self.reason
        if self.notes:
            document["notes"] = self.notes
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "LevelEvent":
        return cls(
            level=document.get("level"),
            achieved_on=document.get("achieved_on"),
            actor_id=document.get("actor_id"),
            actor_name=document.get("actor_name"),
            is_regression=bool(document.get("is_regression", False)),
            previous_level=document.get("previous_level"),
            reason=document.get("reason"),
            notes=document.get("notes"),
        )


def history_of(document: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    history = document.get("level_history")
    if not isinstance(history, list):
        return []
    return [entry for entry in history if isinstance(entry, Mapping)]


def last_level(history: List[Mapping[str, Any]]) -> int | None:
    if not history:
        return None
    level = history[-1].get("level")
    return level if is_valid_level(level) else None


def has_reached(history: List[Mapping[str, Any]], level: int) -> bool:
    """True when any forward entry in ``history`` is at ``level``."""

    return any(
        entry.get("level") == level and not entry.get("is_regression")
        for entry in history
    )


def resolve_current_level(document: Mapping[str, Any]) -> int:
    """Return the student's level, trusting the ledger over ``current_level``."""

    stored = document.get("current_level")
    from_ledger = last_level(history_of(document))

    if from_ledger is None:
        return stored if is_valid_level(stored) else MIN_LEVEL

    if stored != from_ledger:
        logger.warning(
            "%s: student %s has current_level=%r but the last ledger entry is level %s",
            DataIntegrityWarning.__name__,
            document.get("_id"),
            stored,
            from_ledger,
        )
    return from_ledger


def append_event(
    document: MutableMapping[str, Any],
    level: Any,
    actor: Actor | None,
    achieved_on: datetime,
    *,
    is_regression: bool = False,
    previous_level: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> LevelEvent:
    """Append a level event to ``document`` and move ``current_level``.

    Nothing is modified when validation fails.
    """

    checked_level = coerce_level(level)
    if actor is None:
        message = "An actor is required for level changes outside a backfill."
        raise ValidationError(message, {"actor": message})

    if is_regression:
        if previous_level is None or coerce_level(previous_level, field="previous_level") <= checked_level:
            message = "A regression must come from a higher previous level."
            raise ValidationError(message, {"previous_level": message})
    else:
        previous_level = None

    event = LevelEvent(
        level=checked_level,
        achieved_on=achieved_on,
        actor_id=actor.id,
        actor_name=actor.name,
        is_regression=is_regression,
        previous_level=previous_level,
        reason=reason,
        notes=notes,
    )

    history = document.get("level_history")
    if not isinstance(history, list):
        history = []
        document["level_history"] = history
    history.append(event.to_document())
    document["current_level"] = checked_level
    return event


def backfill_events(
    from_level: Any,
    to_level: Any,
    achieved_on: datetime,
    actor_label: str = BACKFILL_ACTOR_LABEL,
    *,
    actor_id: str | None = None,
) -> List[LevelEvent]:
    """One synthetic event per level in ``[from_level, to_level]``."""

    start = coerce_level(from_level, field="from_level")
    end = coerce_level(to_level, field="to_level")
    if start > end:
        message = "from_level cannot be greater than to_level."
        raise ValidationError(message, {"from_level": message})
    if not isinstance(achieved_on, datetime):
        message = "achieved_on must be a datetime."
        raise ValidationError(message, {"achieved_on": message})

    return [
        LevelEvent(
            level=level,
            achieved_on=achieved_on,
            actor_id=actor_id,
            actor_name=actor_label,
        )
        for level in range(start, end + 1)
    ]


def initial_history(level: Any, created_on: datetime, actor: Actor | None) -> List[LevelEvent]:
    """Ledger for a new enquiry entering the funnel at ``level``.

    Levels below the entry level are recorded too, so a student enrolled at
    level 3 counts towards levels 1 and 2 as well.
    """

    return backfill_events(
        MIN_LEVEL,
        level,
        created_on,
        actor.name if actor else BACKFILL_ACTOR_LABEL,
        actor_id=actor.id if actor else None,
    )


def backfill(
    document: MutableMapping[str, Any],
    *,
    from_level: Any = MIN_LEVEL,
    to_level: Any = None,
    achieved_on: datetime | None = None,
    actor_label: str = BACKFILL_ACTOR_LABEL,
) -> List[LevelEvent]:
    """Populate an empty ledger from the student's stored level.

    Returns the created events, or an empty list when the ledger already has
    entries.
    """

    if history_of(document):
        return []

    if to_level is None:
        stored = document.get("current_level")
        to_level = stored if is_valid_level(stored) else from_level
    if achieved_on is None:
        achieved_on = document.get("created_on")

    events = backfill_events(from_level, to_level, achieved_on, actor_label)
    document["level_history"] = [event.to_document() for event in events]
    document["current_level"] = events[-1].level
    return events


def is_monotonic(history: List[Mapping[str, Any]]) -> bool:
    """Forward entries never go below the entry before them."""

    previous: int | None = None
    for entry in history:
        level = entry.get("level")
        if not is_valid_level(level):
            continue
        if previous is not None and not entry.get("is_regression") and level < previous:
            return False
        previous = level
    return True


def check_ledger(document: Mapping[str, Any]) -> List[str]:
    """Describe every ledger invariant ``document`` breaks."""

    issues: List[str] = []
    history = history_of(document)
    stored = document.get("current_level")

    if not history:
        issues.append("level_history is empty")
        return issues

    valid_history = []
    for index, entry in enumerate(history):
        if not is_valid_level(entry.get("level")):
            issues.append(f"entry {index} has out-of-range level {entry.get('level')!r}")
            continue
        if not isinstance(entry.get("achieved_on"), datetime):
            issues.append(f"entry {index} has no achieved_on timestamp")
        valid_history.append(entry)

    for index in range(1, len(valid_history)):
        entry = valid_history[index]
        before = valid_history[index - 1]["level"]
        if entry.get("is_regression") and entry["level"] >= before:
            issues.append(
                f"regression entry at level {entry['level']} does not lower level {before}"
            )

    if not is_monotonic(valid_history):
        issues.append("forward entries decrease without a regression flag")

    ledger_level = last_level(history)
    if ledger_level is not None and stored != ledger_level:
        issues.append(
            f"current_level {stored!r} does not match last ledger level {ledger_level}"
        )

    return issues


__all__ = [
    "Actor",
    "BACKFILL_ACTOR_LABEL",
    "LevelEvent",
    "append_event",
    "backfill",
    "backfill_events",
    "check_ledger",
    "has_reached",
    "history_of",
    "initial_history",
    "is_monotonic",
    "last_level",
    "resolve_current_level",
]
