"""
Unit tests for class/instance storage.

Storage contract:
- Missing file -> empty database; unreadable file -> StoreError
- JSON schema: {"classes": [...], "instances": [...]}
- every update moves updated_at past created_at (the instance is "touched")
"""

import json
import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from classcal.errors import StoreError
from classcal.model import ClassInstance, ClassRecord
from classcal.storage import InstanceFilter, JsonDatabase, MemoryInstanceStore

FIXED = datetime(2026, 1, 1, 12, 0, 0)


def _instance(day: int, start: str = "09:00", class_id: str = "c1") -> ClassInstance:
    return ClassInstance(class_id=class_id, scheduled_date=date(2026, 3, day), start_time=start, end_time="23:00")


class TestMemoryInstanceStore(unittest.TestCase):
    def test_insert_sets_id_and_equal_timestamps(self) -> None:
        store = MemoryInstanceStore(clock=lambda: FIXED)
        (saved,) = store.insert_many([_instance(3)])
        self.assertTrue(saved.id)
        self.assertEqual(saved.created_at, FIXED)
        self.assertTrue(saved.is_pristine)

    def test_update_touches_even_with_frozen_clock(self) -> None:
        store = MemoryInstanceStore(clock=lambda: FIXED)
        (saved,) = store.insert_many([_instance(3)])
        updated = store.update_one(saved.id, {"end_time": "23:30"})
        self.assertGreater(updated.updated_at, updated.created_at)
        self.assertTrue(updated.is_touched)
        self.assertFalse(updated.is_pristine)

    def test_find_is_ordered_and_filtered(self) -> None:
        store = MemoryInstanceStore()
        store.insert_many([_instance(5, "14:00"), _instance(5, "9:30"), _instance(4), _instance(4, class_id="c2")])

        found = store.find(InstanceFilter(class_id="c1"))
        self.assertEqual(
            [(i.scheduled_date.day, i.start_time) for i in found], [(4, "09:00"), (5, "9:30"), (5, "14:00")]
        )
        self.assertEqual(len(store.find(InstanceFilter(date_from=date(2026, 3, 5)))), 2)

    def test_pristine_filter(self) -> None:
        store = MemoryInstanceStore()
        a, b, c = store.insert_many([_instance(3), _instance(4), _instance(5)])
        store.update_one(b.id, {"status": "cancelled"})
        store.update_one(c.id, {"end_time": "23:59"})

        self.assertEqual([i.id for i in store.find(InstanceFilter(pristine=True))], [a.id])
        self.assertEqual(store.delete_many(InstanceFilter(pristine=False)), 2)
        self.assertIsNone(store.get(b.id))

    def test_update_missing_returns_none(self) -> None:
        self.assertIsNone(MemoryInstanceStore().update_one("nope", {"status": "cancelled"}))


class TestJsonDatabase(unittest.TestCase):
    def test_load_missing_file_returns_empty(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            db = JsonDatabase(Path(d) / "missing.json")
            self.assertEqual(db.classes.all(), [])
            self.assertEqual(db.instances.find(InstanceFilter()), [])

    def test_save_and_load_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "classcal.json"
            db = JsonDatabase(p)
            record = db.classes.insert(ClassRecord(title="Yoga", instructor="Sam"))
            (inst,) = db.instances.insert_many([_instance(3, class_id=record.id)])
            db.instances.update_one(inst.id, {"status": "cancelled"})

            data = json.loads(p.read_text(encoding="utf-8"))
            self.assertEqual(sorted(data), ["classes", "instances"])
            self.assertEqual(data["classes"][0]["title"], "Yoga")
            self.assertEqual(data["instances"][0]["classId"], record.id)

            reloaded = JsonDatabase(p)
            self.assertEqual(reloaded.classes.get(record.id), record)
            again = reloaded.instances.get(inst.id)
            self.assertEqual(again.status, "cancelled")
            self.assertTrue(again.is_touched)

    def test_corrupt_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "classcal.json"
            p.write_text("{not json", encoding="utf-8")
            with self.assertRaises(StoreError):
                JsonDatabase(p)

    def test_invalid_records_raise(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "classcal.json"
            p.write_text(json.dumps({"instances": [{"id": "x"}]}), encoding="utf-8")
            with self.assertRaises(StoreError):
                JsonDatabase(p)


if __name__ == "__main__":
    unittest.main()
