"""Unique-student counting and progression figures."""

from __future__ import annotations

import sys
import unittest
from datetime import datetime
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from institute.levels.aggregation import count_by_level, progression
from institute.levels.windows import ALL_TIME, CUSTOM, MONTH, WEEK, DateRange

NOW = datetime(2025, 8, 15, 12, 0, 0)


def _event(student_id, level, achieved_on, gender="Male", program="ICS-PHY"):
    return {
        "student_id": student_id,
        "level": level,
        "achieved_on": achieved_on,
        "gender": gender,
        "program": program,
    }


class CountByLevelTestCase(unittest.TestCase):
    def test_repeated_events_count_once(self) -> None:
        events = [_event("s1", 2, datetime(2025, 8, 10, hour)) for hour in (9, 10, 11)]

        counts = count_by_level(events, WEEK, NOW)

        self.assertEqual(1, counts[2]["total"])
        self.assertEqual(1, counts[2]["boys"])

    def test_only_events_inside_the_window_count(self) -> None:
        events = [
            _event("s1", 2, datetime(2025, 7, 1)),
            _event("s1", 4, datetime(2025, 8, 12)),
        ]

        counts = count_by_level(events, WEEK, NOW)

        self.assertEqual(1, counts[4]["total"])
        self.assertEqual(0, counts[2]["total"])

    def test_custom_range_counts_events_between_dates(self) -> None:
        events = [
            _event("s1", 2, datetime(2025, 3, 1)),
            _event("s1", 3, datetime(2025, 3, 31, 18, 0)),
            _event("s2", 3, datetime(2025, 4, 1)),
        ]
        span = DateRange(datetime(2025, 3, 1), datetime(2025, 3, 31, 23, 59, 59, 999999))

        counts = count_by_level(events, CUSTOM, NOW, span)

        self.assertEqual(1, counts[2]["total"])
        self.assertEqual(1, counts[3]["total"])

    def test_direct_jump_does_not_fill_intermediate_levels(self) -> None:
        events = [
            _event("s1", 1, datetime(2025, 8, 2)),
            _event("s1", 5, datetime(2025, 8, 14)),
        ]

        counts = count_by_level(events, ALL_TIME, NOW)

        self.assertEqual([1, 0, 0, 0, 1], [counts[level]["total"] for level in range(1, 6)])

    def test_gender_and_program_breakdown(self) -> None:
        events = [
            _event("s1", 1, datetime(2025, 8, 5), "Male", "ICOM"),
            _event("s2", 1, datetime(2025, 8, 6), "Female", "FA"),
            _event("s3", 1, datetime(2025, 8, 6), "Female", None),
            _event("s4", 1, datetime(2025, 8, 6), None, "FA"),
        ]

        counts = count_by_level(events, MONTH, NOW)

        self.assertEqual(4, counts[1]["total"])
        self.assertEqual(1, counts[1]["boys"])
        self.assertEqual(2, counts[1]["girls"])
        self.assertEqual({"FA": 2, "ICOM": 1, "Unknown": 1}, counts[1]["programs"])

    def test_invalid_rows_are_skipped(self) -> None:
        events = [
            _event("s1", 0, datetime(2025, 8, 14)),
            _event("s2", 6, datetime(2025, 8, 14)),
            _event("s3", 2, None),
        ]

        counts = count_by_level(events, ALL_TIME, NOW)

        self.assertTrue(all(counts[level]["total"] == 0 for level in range(1, 6)))

    def test_every_level_is_present(self) -> None:
        self.assertEqual([1, 2, 3, 4, 5], sorted(count_by_level([], ALL_TIME, NOW)))


class ProgressionTestCase(unittest.TestCase):
    def test_level_one_compares_with_itself(self) -> None:
        result = progression({1: 50})
        self.assertEqual({"current": 50, "previous": 50, "notProgressed": 0}, result[1])

    def test_not_progressed_is_the_drop_between_levels(self) -> None:
        result = progression({1: 50, 2: 30, 3: 35, 4: 10, 5: 4})

        self.assertEqual({"current": 30, "previous": 50, "notProgressed": 20}, result[2])
        self.assertEqual(0, result[3]["notProgressed"])
        self.assertEqual(25, result[4]["notProgressed"])
        self.assertEqual(6, result[5]["notProgressed"])

    def test_accepts_count_by_level_output(self) -> None:
        counts = count_by_level(
            [_event("s1", 1, datetime(2025, 8, 14)), _event("s2", 1, datetime(2025, 8, 14))],
            ALL_TIME,
            NOW,
        )

        result = progression(counts)

        self.assertEqual(2, result[2]["notProgressed"])
        self.assertEqual(0, result[1]["notProgressed"])


if __name__ == "__main__":
    unittest.main()
