"""Per-level, per-window unique-student counts and non-progression figures."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Set

from ..utils.normalize import FEMALE, MALE
from .transitions import MAX_LEVEL, MIN_LEVEL, is_valid_level
from .windows import DateRange, in_window

LEVELS = tuple(range(MIN_LEVEL, MAX_LEVEL + 1))


def count_by_level(
    events: Iterable[Mapping[str, Any]],
    window: str,
    now: datetime,
    date_range: DateRange | None = None,
) -> Dict[int, Dict[str, Any]]:
    """Count distinct students with an event at each level inside ``window``.

    ``events`` are flat rows with ``student_id``, ``level``, ``achieved_on``
    and the student's canonical ``gender`` and ``program``. Rows with a level
    outside 1..5 or no timestamp are ignored. ``date_range`` bounds the
    ``custom`` window.
    """

    students: Dict[int, Set[Any]] = {level: set() for level in LEVELS}
    boys: Dict[int, Set[Any]] = {level: set() for level in LEVELS}
    girls: Dict[int, Set[Any]] = {level: set() for level in LEVELS}
    programs: Dict[int, Dict[str, Set[Any]]] = {level: {} for level in LEVELS}

    for event in events:
        level = event.get("level")
        achieved_on = event.get("achieved_on")
        if not is_valid_level(level) or not isinstance(achieved_on, datetime):
            continue
        if not in_window(achieved_on, window, now, date_range):
            continue

        student_id = event.get("student_id")
        students[level].add(student_id)

        gender = event.get("gender")
        if gender == MALE:
            boys[level].add(student_id)
        elif gender == FEMALE:
            girls[level].add(student_id)

        program = event.get("program") or "Unknown"
        programs[level].setdefault(program, set()).add(student_id)

    return {
        level: {
            "total": len(students[level]),
            "boys": len(boys[level]),
            "girls": len(girls[level]),
            "programs": {
                name: len(members) for name, members in sorted(programs[level].items())
            },
        }
        for level in LEVELS
    }


def _count(value: Any) -> int:
    if isinstance(value, Mapping):
        value = value.get("total", 0)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def progression(level_counts: Mapping[int, Any]) -> Dict[int, Dict[str, int]]:
    """Compare each level with the one before it.

    Level 1 is compared with itself, so it always shows full progression and
    ``notProgressed`` of 0. Existing dashboards rely on that.
    """

    result: Dict[int, Dict[str, int]] = {}
    for level in LEVELS:
        current = _count(level_counts.get(level))
        if level == MIN_LEVEL:
            previous = current
        else:
            previous = _count(level_counts.get(level - 1))

        result[level] = {
            "current": current,
            "previous": previous,
            "notProgressed": max(0, previous - current),
        }
    return result


__all__ = ["LEVELS", "count_by_level", "progression"]
