"""Level changes, backfills, intake and correspondence for student records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Tuple

from bson import ObjectId

from ..db import get_students_collection, utc_now
from ..levels import ledger
from ..levels.errors import NotFound, StaleLedger, ValidationError
from ..levels.ledger import Actor, LevelEvent
from ..levels.transitions import (
    ADMITTED_LEVEL,
    MIN_LEVEL,
    coerce_level,
    validate,
    validate_regression,
)
from ..utils.normalize import campus_for_gender

logger = logging.getLogger(__name__)

# First time a level is reached, the matching date is stamped on the record.
MILESTONE_FIELDS: Dict[int, str] = {
    2: "prospectus_purchased_on",
    3: "prospectus_returned_on",
    4: "af_submitted_on",
    5: "installment_submitted_on",
}

ACTIVE_FILTER: Dict[str, Any] = {"deleted_at": None}

_EMPTY_LEDGER_FILTER: Dict[str, Any] = {"level_history.0": {"$exists": False}}

LEDGER_WRITE_ATTEMPTS = 2


@dataclass(frozen=True)
class TransitionResult:
    student_id: str
    event: LevelEvent
    admitted: bool
    remark: Dict[str, Any]


def _load_student(student_id: str, projection: Mapping[str, Any] | None = None):
    collection = get_students_collection()
    document = collection.find_one({"_id": student_id, **ACTIVE_FILTER}, projection)
    if not document:
        raise NotFound(student_id)
    return document


def get_student(student_id: str):
    return _load_student(student_id)


def _remark(text: str, actor: Actor, now: datetime) -> Dict[str, Any]:
    return {
        "remark": text,
        "author_id": actor.id,
        "author_name": actor.name,
        "timestamp": now,
    }


def _level_change_text(event: LevelEvent, current_level: int, admitted: bool) -> str:
    if event.is_regression:
        text = (
            f"Level lowered from {current_level} to {event.level}. "
            f"Reason: {event.reason}. Notes: {event.notes}"
        )
    else:
        text = f"Level changed from {current_level} to {event.level}. Notes: {event.notes}"

    if admitted:
        text += (
            " - OFFICIALLY ADMITTED: Student now has access to dashboard"
            " and student correspondence."
        )
    return text


def _ledger_write(
    student_id: str,
    untracked: bool,
    history: List[Dict[str, Any]],
    set_fields: Mapping[str, Any],
    push_fields: Mapping[str, Any] | None = None,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Filter and update that add ``history`` to a student's ledger.

    An untracked ledger (missing, null or empty) is replaced wholesale, and
    only while it is still untracked; a concurrent write then matches nothing.
    """

    push: Dict[str, Any] = dict(push_fields or {})
    if untracked:
        query = {"_id": student_id, **_EMPTY_LEDGER_FILTER}
        update: Dict[str, Any] = {"$set": {**set_fields, "level_history": history}}
    else:
        query = {"_id": student_id}
        push["level_history"] = {"$each": history}
        update = {"$set": dict(set_fields)}
    if push:
        update["$push"] = push
    return query, update


def append_level_event(
    student_id: str,
    level: Any,
    actor: Actor,
    is_regression: bool = False,
    previous_level: int | None = None,
    *,
    reason: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> LevelEvent:
    """Append one event to a stored student's ledger without transition checks."""

    now = now or utc_now()
    document = _load_student(student_id, {"current_level": 1, "level_history": 1})
    untracked = not ledger.history_of(document)

    event = ledger.append_event(
        document,
        level,
        actor,
        now,
        is_regression=is_regression,
        previous_level=previous_level,
        reason=reason,
        notes=notes,
    )

    query, update = _ledger_write(
        student_id,
        untracked,
        [event.to_document()],
        {"current_level": event.level, "updated_on": now},
    )
    result = get_students_collection().update_one(query, update)
    if result.matched_count == 0:
        if untracked:
            raise StaleLedger(student_id)
        raise NotFound(student_id)

    logger.info("Appended level %s to student %s", event.level, student_id)
    return event


def _try_level_change(
    student_id: str,
    requested: int,
    notes: Any,
    actor: Actor,
    regression_reason: Any,
    now: datetime,
) -> TransitionResult | None:
    document = _load_student(student_id)
    current = ledger.resolve_current_level(document)

    if regression_reason is not None:
        decision = validate_regression(current, requested, notes, regression_reason)
    else:
        decision = validate(current, requested, notes)

    # Records that predate the ledger get their history initialised in the
    # same write.
    initialised = ledger.backfill(
        document, to_level=current, achieved_on=document.get("created_on") or now
    )
    reached_before = ledger.has_reached(ledger.history_of(document), ADMITTED_LEVEL)

    event = ledger.append_event(
        document,
        decision.requested_level,
        actor,
        now,
        is_regression=decision.is_regression,
        previous_level=decision.previous_level,
        reason=decision.reason,
        notes=decision.notes,
    )

    admitted = (
        event.level == ADMITTED_LEVEL
        and not reached_before
        and not document.get("is_admitted")
    )

    set_fields: Dict[str, Any] = {"current_level": event.level, "updated_on": now}
    milestone = MILESTONE_FIELDS.get(event.level)
    if milestone and not event.is_regression and not document.get(milestone):
        set_fields[milestone] = now
    if admitted:
        set_fields["is_admitted"] = True
        set_fields["admitted_on"] = now

    remark = _remark(_level_change_text(event, current, admitted), actor, now)
    untracked = bool(initialised)
    query, update = _ledger_write(
        student_id,
        untracked,
        [entry.to_document() for entry in initialised] + [event.to_document()],
        set_fields,
        {"remarks": remark},
    )

    result = get_students_collection().update_one(query, update)
    if result.matched_count == 0:
        if untracked:
            logger.warning(
                "Student %s gained level history concurrently; reloading", student_id
            )
            return None
        raise NotFound(student_id)

    if initialised:
        logger.info(
            "Initialised level history for student %s with levels %s-%s",
            student_id,
            initialised[0].level,
            initialised[-1].level,
        )
    logger.info(
        "Student %s moved from level %s to %s by %s%s",
        student_id,
        current,
        event.level,
        actor.name,
        " (regression)" if event.is_regression else "",
    )
    if admitted:
        logger.info("Student %s has been officially admitted", student_id)

    return TransitionResult(
        student_id=student_id, event=event, admitted=admitted, remark=remark
    )


def record_level_change(
    student_id: str,
    requested_level: Any,
    notes: Any,
    actor: Actor,
    regression_reason: Any = None,
    *,
    now: datetime | None = None,
) -> TransitionResult:
    """Validate and record a level change, returning the appended event.

    Passing ``regression_reason`` selects the downgrade path. Reaching level
    5 for the first time marks the student as admitted. If another writer
    initialises the ledger first, the student is reloaded and the change is
    validated again; :class:`StaleLedger` is raised when that keeps happening.
    """

    requested = coerce_level(requested_level)
    now = now or utc_now()

    for _ in range(LEDGER_WRITE_ATTEMPTS):
        result = _try_level_change(
            student_id, requested, notes, actor, regression_reason, now
        )
        if result is not None:
            return result
    raise StaleLedger(student_id)


def backfill_student(
    student_id: str,
    *,
    from_level: Any = MIN_LEVEL,
    to_level: Any = None,
    achieved_on: datetime | None = None,
    actor_label: str = ledger.BACKFILL_ACTOR_LABEL,
    now: datetime | None = None,
) -> List[LevelEvent]:
    """Create the ledger of a student tracked before level history existed.

    Returns an empty list, and writes nothing, when the student already has
    level history.
    """

    from_level = coerce_level(from_level, field="from_level")
    if to_level is not None:
        to_level = coerce_level(to_level, field="to_level")

    now = now or utc_now()
    document = _load_student(student_id)

    if achieved_on is None:
        achieved_on = document.get("created_on") or now

    events = ledger.backfill(
        document,
        from_level=from_level,
        to_level=to_level,
        achieved_on=achieved_on,
        actor_label=actor_label,
    )
    if not events:
        logger.info("Student %s already has level history; backfill skipped", student_id)
        return []

    collection = get_students_collection()
    result = collection.update_one(
        {"_id": student_id, **_EMPTY_LEDGER_FILTER},
        {
            "$set": {
                "level_history": [event.to_document() for event in events],
                "current_level": events[-1].level,
                "updated_on": now,
            }
        },
    )
    if result.modified_count == 0:
        logger.info("Student %s gained level history concurrently; backfill skipped", student_id)
        return []

    logger.info(
        "Backfilled levels %s-%s for student %s at %s",
        events[0].level,
        events[-1].level,
        student_id,
        achieved_on.isoformat(),
    )
    return events


def backfill_all(*, actor_label: str = ledger.BACKFILL_ACTOR_LABEL, now: datetime | None = None) -> int:
    """Backfill every active student without level history. Returns the count."""

    collection = get_students_collection()
    cursor = collection.find({**ACTIVE_FILTER, **_EMPTY_LEDGER_FILTER}, projection={"_id": 1})

    updated = 0
    for document in cursor:
        if backfill_student(document["_id"], actor_label=actor_label, now=now):
            updated += 1
    return updated


def create_student(cleaned: Mapping[str, Any], actor: Actor, *, now: datetime | None = None):
    """Insert a new enquiry with its initial ledger and return the document."""

    now = now or utc_now()
    document: Dict[str, Any] = dict(cleaned)
    level = coerce_level(document.pop("current_level", MIN_LEVEL), field="current_level")

    document["_id"] = document.get("_id") or str(ObjectId())
    document["campus"] = document.get("campus") or campus_for_gender(document.get("gender"))
    document["created_on"] = now
    document["updated_on"] = now
    document["current_level"] = level
    document["level_history"] = [
        event.to_document() for event in ledger.initial_history(level, now, actor)
    ]
    document["remarks"] = []
    for reached, field in MILESTONE_FIELDS.items():
        if reached <= level:
            document[field] = now
    if level == ADMITTED_LEVEL:
        document["is_admitted"] = True
        document["admitted_on"] = now

    get_students_collection().insert_one(document)
    logger.info("Created student %s at level %s", document["_id"], level)
    return document


def add_remark(student_id: str, remark: Any, actor: Actor, *, now: datetime | None = None):
    text = str(remark).strip() if remark is not None else ""
    if not text:
        raise ValidationError("Remark is required.", {"remark": "Remark is required."})

    entry = _remark(text, actor, now or utc_now())
    result = get_students_collection().update_one(
        {"_id": student_id, **ACTIVE_FILTER}, {"$push": {"remarks": entry}}
    )
    if result.matched_count == 0:
        raise NotFound(student_id)
    return entry


def list_remarks(student_id: str):
    document = _load_student(student_id, {"full_name": 1, "email": 1, "remarks": 1})
    remarks = document.get("remarks")
    return document, remarks if isinstance(remarks, list) else []


def students_with_remark_status() -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = [
        {"$match": ACTIVE_FILTER},
        {
            "$project": {
                "full_name": 1,
                "email": 1,
                "current_level": 1,
                "is_admitted": {"$ifNull": ["$is_admitted", False]},
                "remark_count": {"$size": {"$ifNull": ["$remarks", []]}},
                "last_remark_at": {"$max": "$remarks.timestamp"},
            }
        },
        {"$sort": {"last_remark_at": -1, "full_name": 1}},
    ]

    rows = []
    for row in get_students_collection().aggregate(pipeline):
        last = row.get("last_remark_at")
        rows.append(
            {
                "_id": str(row.get("_id", "")),
                "full_name": row.get("full_name"),
                "email": row.get("email"),
                "current_level": row.get("current_level"),
                "is_admitted": bool(row.get("is_admitted")),
                "has_remarks": row.get("remark_count", 0) > 0,
                "remark_count": row.get("remark_count", 0),
                "last_remark_at": last.isoformat() if isinstance(last, datetime) else None,
            }
        )
    return rows


__all__ = [
    "MILESTONE_FIELDS",
    "TransitionResult",
    "add_remark",
    "append_level_event",
    "backfill_all",
    "backfill_student",
    "create_student",
    "get_student",
    "list_remarks",
    "record_level_change",
    "students_with_remark_status",
]
