"""Dashboard statistics computed from the students' level history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping

from ..db import get_students_collection, utc_now
from ..levels import ledger
from ..levels.aggregation import LEVELS, count_by_level, progression
from ..levels.transitions import ADMITTED_LEVEL, is_valid_level
from ..levels.windows import DateRange, in_window, window_ceiling, window_floor
from ..utils.normalize import (
    FEMALE,
    MALE,
    campus_for_gender,
    clean_label,
    normalize_campus,
    normalize_gender,
    normalize_program,
)
from .enquiries import ACTIVE_FILTER

logger = logging.getLogger(__name__)

FILTER_FIELDS = ("gender", "program", "campus")


def _normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    gender = normalize_gender(row.get("gender"))
    normalized = dict(row)
    normalized["student_id"] = str(row.get("student_id", ""))
    normalized["gender"] = gender
    # unrecognised legacy programs keep their stored name
    normalized["program"] = normalize_program(row.get("program"), strict=False) or clean_label(
        row.get("program")
    )
    normalized["campus"] = normalize_campus(row.get("campus")) or campus_for_gender(gender)
    return normalized


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(
        row.get(field) == filters[field]
        for field in FILTER_FIELDS
        if filters.get(field)
    )


def _min_level_stage(min_level: int) -> Dict[str, Any]:
    # ledger level first, stored current_level only when there is no history
    resolved = {
        "$ifNull": [{"$arrayElemAt": ["$level_history.level", -1]}, "$current_level"]
    }
    return {"$match": {"$expr": {"$gte": [resolved, min_level]}}}


def load_event_rows(
    window: str,
    now: datetime,
    filters: Mapping[str, Any] | None = None,
    date_range: DateRange | None = None,
) -> List[Dict[str, Any]]:
    """Flatten level history into one row per event, narrowed to ``window``.

    The store query only applies the window's bounds; exact bucket
    membership is decided by the aggregator. ``filters`` may carry
    ``min_level`` to keep students currently at that level or above.
    """

    filters = filters or {}
    pipeline: List[Dict[str, Any]] = [{"$match": ACTIVE_FILTER}]
    if filters.get("min_level"):
        pipeline.append(_min_level_stage(filters["min_level"]))
    pipeline.append({"$unwind": "$level_history"})

    achieved_range: Dict[str, datetime] = {}
    floor = window_floor(window, now, date_range)
    if floor is not None:
        achieved_range["$gte"] = floor
    ceiling = window_ceiling(window, now, date_range)
    if ceiling is not None:
        achieved_range["$lte"] = ceiling
    if achieved_range:
        pipeline.append({"$match": {"level_history.achieved_on": achieved_range}})

    pipeline.extend(
        [
            {
                "$project": {
                    "_id": 0,
                    "student_id": "$_id",
                    "full_name": 1,
                    "gender": 1,
                    "program": 1,
                    "campus": 1,
                    "level": "$level_history.level",
                    "achieved_on": "$level_history.achieved_on",
                    "actor_name": "$level_history.actor_name",
                    "is_regression": {"$ifNull": ["$level_history.is_regression", False]},
                    "previous_level": "$level_history.previous_level",
                }
            },
            {"$sort": {"achieved_on": 1, "student_id": 1}},
        ]
    )

    rows = (_normalize_row(row) for row in get_students_collection().aggregate(pipeline))
    return [row for row in rows if _matches(row, filters)]


def get_progression_report(
    window: str,
    filters: Mapping[str, Any] | None = None,
    *,
    date_range: DateRange | None = None,
    now: datetime | None = None,
) -> Dict[int, Dict[str, int]]:
    now = now or utc_now()
    rows = load_event_rows(window, now, filters, date_range)
    counts = count_by_level(rows, window, now, date_range)
    overall = progression(counts)

    return {
        level: {
            **overall[level],
            "boys": counts[level]["boys"],
            "girls": counts[level]["girls"],
        }
        for level in LEVELS
    }


def get_level_breakdown(
    window: str, *, date_range: DateRange | None = None, now: datetime | None = None
) -> Dict[int, int]:
    now = now or utc_now()
    rows = load_event_rows(window, now, date_range=date_range)
    counts = count_by_level(rows, window, now, date_range)
    return {level: counts[level]["total"] for level in LEVELS}


def _rows_in_window(
    rows: Iterable[Mapping[str, Any]],
    window: str,
    now: datetime,
    date_range: DateRange | None = None,
):
    for row in rows:
        achieved_on = row.get("achieved_on")
        if (
            is_valid_level(row.get("level"))
            and isinstance(achieved_on, datetime)
            and in_window(achieved_on, window, now, date_range)
        ):
            yield row


def get_principal_stats(
    window: str,
    filters: Mapping[str, Any] | None = None,
    *,
    date_range: DateRange | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """Everything the Principal dashboard shows for one window."""

    now = now or utc_now()
    rows = load_event_rows(window, now, filters, date_range)
    counts = count_by_level(rows, window, now, date_range)

    students: Dict[str, Mapping[str, Any]] = {}
    for row in _rows_in_window(rows, window, now, date_range):
        students.setdefault(row["student_id"], row)

    programs: Dict[str, Dict[str, int]] = {"boys": {}, "girls": {}}
    for row in students.values():
        key = {MALE: "boys", FEMALE: "girls"}.get(row.get("gender"))
        if key:
            program = row.get("program") or "Unknown"
            programs[key][program] = programs[key].get(program, 0) + 1

    return {
        "total": len(students),
        "boys": sum(1 for row in students.values() if row.get("gender") == MALE),
        "girls": sum(1 for row in students.values() if row.get("gender") == FEMALE),
        "programs": programs,
        "levels": counts,
        "level_progression": progression(counts),
        "gender_level_progression": {
            "boys": progression({level: counts[level]["boys"] for level in LEVELS}),
            "girls": progression({level: counts[level]["girls"] for level in LEVELS}),
        },
    }


def _active_students(projection: Mapping[str, Any]):
    return get_students_collection().find(ACTIVE_FILTER, projection=projection)


def get_overview() -> Dict[str, Any]:
    """Current funnel position of every active student."""

    distribution = {level: 0 for level in LEVELS}
    for document in _active_students({"current_level": 1, "level_history": 1}):
        distribution[ledger.resolve_current_level(document)] += 1

    at_least = {
        level: sum(distribution[higher] for higher in LEVELS if higher >= level)
        for level in LEVELS
    }

    return {
        "total_enquiries": sum(distribution.values()),
        "admitted_students": distribution[ADMITTED_LEVEL],
        "level_distribution": distribution,
        "level_breakdown": at_least,
        "level_progression": progression(at_least),
    }


def find_integrity_issues() -> List[Dict[str, Any]]:
    problems = []
    for document in _active_students({"full_name": 1, "current_level": 1, "level_history": 1}):
        issues = ledger.check_ledger(document)
        if issues:
            problems.append(
                {
                    "_id": str(document.get("_id", "")),
                    "full_name": document.get("full_name"),
                    "current_level": document.get("current_level"),
                    "issues": issues,
                }
            )

    if problems:
        logger.warning("Found %d student(s) with level history problems", len(problems))
    return problems


def export_level_history_rows(
    window: str,
    filters: Mapping[str, Any] | None = None,
    *,
    date_range: DateRange | None = None,
    now: datetime | None = None,
) -> List[Dict[str, Any]]:
    now = now or utc_now()
    rows = load_event_rows(window, now, filters, date_range)
    return [
        {
            "student_id": row["student_id"],
            "full_name": row.get("full_name") or "",
            "gender": row.get("gender") or "",
            "program": row.get("program") or "",
            "campus": row.get("campus") or "",
            "level": row["level"],
            "achieved_on": row["achieved_on"].isoformat(),
            "actor_name": row.get("actor_name") or "System",
            "is_regression": bool(row.get("is_regression")),
            "previous_level": row.get("previous_level") or "",
        }
        for row in _rows_in_window(rows, window, now, date_range)
    ]


__all__ = [
    "export_level_history_rows",
    "find_integrity_issues",
    "get_level_breakdown",
    "get_overview",
    "get_principal_stats",
    "get_progression_report",
    "load_event_rows",
]
