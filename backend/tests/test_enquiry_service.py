"""Enquiry service behaviour against a mocked students collection."""

from __future__ import annotations

import sys
import unittest
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from institute.levels.errors import InvalidTransition, NotFound, StaleLedger, ValidationError
from institute.levels.ledger import Actor, LevelEvent
from institute.services import enquiries

CREATED = datetime(2025, 8, 1, 9, 0, 0)
NOW = datetime(2025, 8, 15, 12, 0, 0)
ACTOR = Actor(id="admin", name="Administrator", role="admin")


class ServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.collection = MagicMock()
        self.collection.update_one.return_value = MagicMock(matched_count=1, modified_count=1)
        patcher = patch(
            "institute.services.enquiries.get_students_collection",
            return_value=self.collection,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _student(self, **fields):
        document = {
            "_id": "s1",
            "full_name": "Ayesha Khan",
            "gender": "Female",
            "created_on": CREATED,
            "current_level": 1,
            "level_history": [{"level": 1, "achieved_on": CREATED, "actor_name": "Administrator"}],
        }
        document.update(fields)
        self.collection.find_one.return_value = document
        return document

    def _update(self):
        self.collection.update_one.assert_called_once()
        return self.collection.update_one.call_args[0]


class RecordLevelChangeTestCase(ServiceTestCase):
    def test_direct_jump_to_admitted(self) -> None:
        self._student()

        result = enquiries.record_level_change("s1", 5, "Fee paid", ACTOR, now=NOW)

        self.assertTrue(result.admitted)
        self.assertEqual(5, result.event.level)
        self.assertEqual(NOW, result.event.achieved_on)

        query, update = self._update()
        self.assertEqual({"_id": "s1"}, query)
        self.assertEqual(5, update["$set"]["current_level"])
        self.assertTrue(update["$set"]["is_admitted"])
        self.assertEqual(NOW, update["$set"]["installment_submitted_on"])
        self.assertNotIn("prospectus_purchased_on", update["$set"])

        pushed = update["$push"]["level_history"]["$each"]
        self.assertEqual([5], [entry["level"] for entry in pushed])
        self.assertIn("OFFICIALLY ADMITTED", update["$push"]["remarks"]["remark"])
        self.assertEqual("Administrator", update["$push"]["remarks"]["author_name"])

    def test_forward_change_stamps_milestone_once(self) -> None:
        self._student(prospectus_purchased_on=CREATED)

        result = enquiries.record_level_change("s1", "2", "Bought prospectus", ACTOR, now=NOW)

        self.assertFalse(result.admitted)
        _, update = self._update()
        self.assertNotIn("prospectus_purchased_on", update["$set"])
        self.assertEqual(
            "Level changed from 1 to 2. Notes: Bought prospectus",
            update["$push"]["remarks"]["remark"],
        )

    def test_downgrade_with_reason_appends_regression(self) -> None:
        self._student(
            current_level=4,
            level_history=[
                {"level": 1, "achieved_on": CREATED},
                {"level": 4, "achieved_on": CREATED},
            ],
        )

        result = enquiries.record_level_change(
            "s1", 2, "Refund issued", ACTOR, "Joined another college", now=NOW
        )

        self.assertTrue(result.event.is_regression)
        _, update = self._update()
        entry = update["$push"]["level_history"]["$each"][0]
        self.assertEqual(2, entry["level"])
        self.assertTrue(entry["is_regression"])
        self.assertEqual(4, entry["previous_level"])
        self.assertNotIn("prospectus_purchased_on", update["$set"])
        self.assertTrue(update["$push"]["remarks"]["remark"].startswith("Level lowered from 4 to 2"))

    def test_downgrade_without_reason_is_rejected(self) -> None:
        self._student(current_level=4, level_history=[{"level": 4, "achieved_on": CREATED}])

        with self.assertRaises(InvalidTransition):
            enquiries.record_level_change("s1", 2, "Refund issued", ACTOR, now=NOW)
        self.collection.update_one.assert_not_called()

    def test_same_level_is_rejected(self) -> None:
        self._student(current_level=3, level_history=[{"level": 3, "achieved_on": CREATED}])

        with self.assertRaises(InvalidTransition):
            enquiries.record_level_change("s1", 3, "again", ACTOR, now=NOW)
        self.collection.update_one.assert_not_called()

    def test_invalid_level_fails_before_lookup(self) -> None:
        with self.assertRaises(ValidationError):
            enquiries.record_level_change("s1", 8, "notes", ACTOR, now=NOW)
        self.collection.find_one.assert_not_called()

    def test_missing_student(self) -> None:
        self.collection.find_one.return_value = None

        with self.assertRaises(NotFound):
            enquiries.record_level_change("nobody", 2, "notes", ACTOR, now=NOW)

    def test_untracked_student_gets_history_in_same_write(self) -> None:
        self._student(current_level=3, level_history=[])

        enquiries.record_level_change("s1", 4, "Fee submitted", ACTOR, now=NOW)

        query, update = self._update()
        self.assertEqual({"_id": "s1", "level_history.0": {"$exists": False}}, query)
        written = update["$set"]["level_history"]
        self.assertEqual([1, 2, 3, 4], [entry["level"] for entry in written])
        self.assertEqual([CREATED] * 3 + [NOW], [entry["achieved_on"] for entry in written])
        self.assertNotIn("level_history", update["$push"])
        self.assertIn("remarks", update["$push"])

    def test_null_history_is_replaced_not_pushed(self) -> None:
        self._student(current_level=2, level_history=None)

        result = enquiries.record_level_change("s1", 3, "Returned prospectus", ACTOR, now=NOW)

        self.assertEqual(3, result.event.level)
        query, update = self._update()
        self.assertEqual({"_id": "s1", "level_history.0": {"$exists": False}}, query)
        self.assertEqual([1, 2, 3], [entry["level"] for entry in update["$set"]["level_history"]])
        self.assertEqual(["remarks"], list(update["$push"]))

    def test_concurrent_initialisation_reloads_and_pushes_once(self) -> None:
        untracked = {"_id": "s1", "created_on": CREATED, "current_level": 2, "level_history": None}
        tracked = {
            "_id": "s1",
            "created_on": CREATED,
            "current_level": 2,
            "level_history": [
                {"level": 1, "achieved_on": CREATED},
                {"level": 2, "achieved_on": CREATED},
            ],
        }
        self.collection.find_one.side_effect = [untracked, tracked]
        self.collection.update_one.side_effect = [
            MagicMock(matched_count=0, modified_count=0),
            MagicMock(matched_count=1, modified_count=1),
        ]

        with self.assertLogs("institute.services.enquiries", level="WARNING"):
            result = enquiries.record_level_change("s1", 3, "Returned prospectus", ACTOR, now=NOW)

        self.assertEqual(3, result.event.level)
        self.assertEqual(2, self.collection.update_one.call_count)
        query, update = self.collection.update_one.call_args[0]
        self.assertEqual({"_id": "s1"}, query)
        pushed = update["$push"]["level_history"]["$each"]
        self.assertEqual([3], [entry["level"] for entry in pushed])
        self.assertNotIn("level_history", update["$set"])

    def test_repeated_concurrent_initialisation_raises_stale_ledger(self) -> None:
        self.collection.find_one.side_effect = lambda *args, **kwargs: {
            "_id": "s1",
            "created_on": CREATED,
            "current_level": 2,
            "level_history": [],
        }
        self.collection.update_one.return_value = MagicMock(matched_count=0, modified_count=0)

        with self.assertLogs("institute.services.enquiries", level="WARNING"):
            with self.assertRaises(StaleLedger):
                enquiries.record_level_change("s1", 3, "notes", ACTOR, now=NOW)
        self.assertEqual(
            enquiries.LEDGER_WRITE_ATTEMPTS, self.collection.update_one.call_count
        )

    def test_readmission_after_regression_does_not_admit_again(self) -> None:
        self._student(
            current_level=4,
            is_admitted=True,
            admitted_on=CREATED,
            installment_submitted_on=CREATED,
            level_history=[
                {"level": 1, "achieved_on": CREATED},
                {"level": 5, "achieved_on": CREATED},
                {"level": 4, "achieved_on": CREATED, "is_regression": True, "previous_level": 5},
            ],
        )

        result = enquiries.record_level_change("s1", 5, "Fee paid again", ACTOR, now=NOW)

        self.assertFalse(result.admitted)
        _, update = self._update()
        self.assertEqual(5, update["$set"]["current_level"])
        self.assertNotIn("is_admitted", update["$set"])
        self.assertNotIn("admitted_on", update["$set"])
        self.assertNotIn("installment_submitted_on", update["$set"])
        self.assertNotIn("OFFICIALLY ADMITTED", update["$push"]["remarks"]["remark"])

    def test_earlier_admission_in_history_alone_blocks_readmission(self) -> None:
        self._student(
            current_level=4,
            level_history=[
                {"level": 1, "achieved_on": CREATED},
                {"level": 5, "achieved_on": CREATED},
                {"level": 4, "achieved_on": CREATED, "is_regression": True, "previous_level": 5},
            ],
        )

        result = enquiries.record_level_change("s1", 5, "Fee paid again", ACTOR, now=NOW)

        self.assertFalse(result.admitted)
        _, update = self._update()
        self.assertNotIn("is_admitted", update["$set"])
        self.assertNotIn("admitted_on", update["$set"])

    def test_stale_current_level_uses_ledger(self) -> None:
        self._student(
            current_level=1,
            level_history=[
                {"level": 1, "achieved_on": CREATED},
                {"level": 3, "achieved_on": CREATED},
            ],
        )

        with self.assertLogs("institute.levels.ledger", level="WARNING"):
            with self.assertRaises(InvalidTransition):
                enquiries.record_level_change("s1", 3, "notes", ACTOR, now=NOW)


class AppendLevelEventTestCase(ServiceTestCase):
    def test_append_persists_event_and_level(self) -> None:
        self._student(current_level=2, level_history=[{"level": 2, "achieved_on": CREATED}])

        event = enquiries.append_level_event("s1", 4, ACTOR, now=NOW)

        self.assertEqual(4, event.level)
        _, update = self._update()
        self.assertEqual(4, update["$set"]["current_level"])
        pushed = update["$push"]["level_history"]["$each"]
        self.assertEqual([4], [entry["level"] for entry in pushed])
        self.assertEqual("admin", pushed[0]["actor_id"])

    def test_append_to_null_history_sets_ledger(self) -> None:
        self._student(current_level=2, level_history=None)

        enquiries.append_level_event("s1", 3, ACTOR, now=NOW)

        query, update = self._update()
        self.assertEqual({"_id": "s1", "level_history.0": {"$exists": False}}, query)
        self.assertEqual([3], [entry["level"] for entry in update["$set"]["level_history"]])
        self.assertNotIn("$push", update)

    def test_append_to_null_history_lost_race(self) -> None:
        self._student(current_level=2, level_history=None)
        self.collection.update_one.return_value = MagicMock(matched_count=0, modified_count=0)

        with self.assertRaises(StaleLedger):
            enquiries.append_level_event("s1", 3, ACTOR, now=NOW)

    def test_out_of_range_level_writes_nothing(self) -> None:
        self._student()

        with self.assertRaises(ValidationError):
            enquiries.append_level_event("s1", 6, ACTOR, now=NOW)
        self.collection.update_one.assert_not_called()

    def test_missing_student(self) -> None:
        self.collection.find_one.return_value = None

        with self.assertRaises(NotFound):
            enquiries.append_level_event("nobody", 2, ACTOR, now=NOW)


class BackfillServiceTestCase(ServiceTestCase):
    def test_backfill_writes_conditionally(self) -> None:
        self._student(current_level=3, level_history=[])

        events = enquiries.backfill_student("s1", now=NOW)

        self.assertEqual([1, 2, 3], [event.level for event in events])
        query, update = self._update()
        self.assertEqual({"_id": "s1", "level_history.0": {"$exists": False}}, query)
        self.assertEqual(3, len(update["$set"]["level_history"]))
        self.assertEqual(CREATED, update["$set"]["level_history"][0]["achieved_on"])

    def test_backfill_is_a_no_op_with_history(self) -> None:
        self._student()

        self.assertEqual([], enquiries.backfill_student("s1", now=NOW))
        self.collection.update_one.assert_not_called()

    def test_backfill_rejects_level_zero_before_lookup(self) -> None:
        with self.assertRaises(ValidationError) as raised:
            enquiries.backfill_student("s1", from_level=0, now=NOW)

        self.assertIn("from_level", raised.exception.details)
        self.collection.find_one.assert_not_called()

    def test_backfill_lost_race(self) -> None:
        self._student(current_level=2, level_history=[])
        self.collection.update_one.return_value = MagicMock(matched_count=0, modified_count=0)

        self.assertEqual([], enquiries.backfill_student("s1", now=NOW))

    def test_backfill_all_counts_updated_students(self) -> None:
        self.collection.find.return_value = [{"_id": "a"}, {"_id": "b"}]
        event = LevelEvent(level=1, achieved_on=CREATED)

        with patch.object(enquiries, "backfill_student", side_effect=[[event], []]) as backfill:
            self.assertEqual(1, enquiries.backfill_all(now=NOW))

        self.assertEqual(2, backfill.call_count)


class IntakeAndRemarksTestCase(ServiceTestCase):
    def test_create_student_builds_initial_history(self) -> None:
        document = enquiries.create_student(
            {"_id": "s9", "full_name": "Sara", "gender": "Female", "current_level": 3},
            ACTOR,
            now=NOW,
        )

        self.collection.insert_one.assert_called_once_with(document)
        self.assertEqual("Girls", document["campus"])
        self.assertEqual(3, document["current_level"])
        self.assertEqual([1, 2, 3], [entry["level"] for entry in document["level_history"]])
        self.assertEqual(NOW, document["prospectus_returned_on"])
        self.assertNotIn("af_submitted_on", document)
        self.assertNotIn("is_admitted", document)

    def test_create_student_generates_id(self) -> None:
        document = enquiries.create_student({"full_name": "Ali"}, ACTOR, now=NOW)

        self.assertEqual(24, len(document["_id"]))
        self.assertEqual("Boys", document["campus"])
        self.assertEqual([1], [entry["level"] for entry in document["level_history"]])

    def test_add_remark(self) -> None:
        entry = enquiries.add_remark("s1", "  Called parents ", ACTOR, now=NOW)

        self.assertEqual("Called parents", entry["remark"])
        query, update = self._update()
        self.assertEqual({"_id": "s1", "deleted_at": None}, query)
        self.assertEqual({"remarks": entry}, update["$push"])

    def test_add_remark_validation_and_missing_student(self) -> None:
        with self.assertRaises(ValidationError):
            enquiries.add_remark("s1", " ", ACTOR)

        self.collection.update_one.return_value = MagicMock(matched_count=0)
        with self.assertRaises(NotFound):
            enquiries.add_remark("s1", "hello", ACTOR)

    def test_students_with_remark_status(self) -> None:
        self.collection.aggregate.return_value = [
            {"_id": "s1", "full_name": "A", "remark_count": 2, "last_remark_at": NOW},
            {"_id": "s2", "full_name": "B", "remark_count": 0, "last_remark_at": None},
        ]

        rows = enquiries.students_with_remark_status()

        self.assertTrue(rows[0]["has_remarks"])
        self.assertEqual(NOW.isoformat(), rows[0]["last_remark_at"])
        self.assertFalse(rows[1]["has_remarks"])
        self.assertIsNone(rows[1]["last_remark_at"])


if __name__ == "__main__":
    unittest.main()
