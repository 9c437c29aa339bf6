"""
Unit tests for the class lifecycle service (in-memory stores, fixed today).
"""

import unittest
from datetime import date, datetime, timedelta

from classcal.config import Settings
from classcal.errors import ConflictError, NotFoundError, ValidationError
from classcal.model import ClassRecord, DayWiseTimeSlot, RecurrenceConfig, TimeSlot, WeeklyPattern
from classcal.service import ClassQuery, ClassService
from classcal.storage import InstanceFilter, MemoryClassStore, MemoryInstanceStore
from classcal.validation import validate_create_class, validate_update_class

TODAY = date(2026, 3, 2)


def _ticking_clock():
    state = {"now": datetime(2026, 1, 1, 8, 0, 0)}

    def clock() -> datetime:
        state["now"] += timedelta(seconds=1)
        return state["now"]

    return clock


def _weekly_payload(title: str = "Yoga", day: str = "tuesday") -> dict:
    return {
        "title": title,
        "instructor": "Sam",
        "isRecurring": True,
        "recurrence": {
            "type": "weekly",
            "startDate": "2026-02-01",
            "endDate": "2026-04-30",
            "dayWiseTimeSlots": [{"day": day, "timeSlots": [{"startTime": "9:00", "endTime": "10:00"}]}],
        },
    }


def _one_time_payload(title: str = "Workshop", day: str = "2026-03-04") -> dict:
    return {
        "title": title,
        "isRecurring": False,
        "scheduledDate": day,
        "startTime": "08:00",
        "endTime": "08:45",
    }


class ServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        clock = _ticking_clock()
        self.classes = MemoryClassStore(clock=clock)
        self.instances = MemoryInstanceStore(clock=clock)
        self.service = ClassService(self.classes, self.instances, settings=Settings(), today=lambda: TODAY)

    def create(self, payload: dict):
        return self.service.create_class(validate_create_class(payload))

    def instances_of(self, class_id: str, **kwargs):
        return self.instances.find(InstanceFilter(class_id=class_id, **kwargs))


class TestCreate(ServiceTestCase):
    def test_recurring_class_gets_instances(self) -> None:
        record, instances = self.create(_weekly_payload())

        self.assertIsNotNone(record.id)
        self.assertEqual(record.recurrence.type, "weekly")
        self.assertEqual(len(instances), 13)
        self.assertEqual(instances[0].scheduled_date, date(2026, 2, 3))
        self.assertEqual(instances[0].start_time, "09:00")
        self.assertTrue(all(i.class_id == record.id and i.id for i in instances))
        self.assertEqual(len(self.instances_of(record.id)), 13)

    def test_one_time_class_has_no_instances(self) -> None:
        record, instances = self.create(_one_time_payload())
        self.assertIsNone(instances)
        self.assertEqual(record.scheduled_date, date(2026, 3, 4))
        self.assertEqual(self.instances.find(InstanceFilter()), [])

    def test_repeated_day_gives_unique_instances(self) -> None:
        # built directly, without going through payload validation
        pattern = WeeklyPattern(
            days=(
                DayWiseTimeSlot(day="monday", time_slots=(TimeSlot("09:00", "10:00"),)),
                DayWiseTimeSlot(day="monday", time_slots=(TimeSlot("9:00", "11:00"),)),
            )
        )
        record = ClassRecord(
            title="Yoga",
            is_recurring=True,
            recurrence=RecurrenceConfig(start_date=date(2026, 2, 2), pattern=pattern, occurrences=8),
        )

        saved, created = self.service.create_class(record)
        keys = [(i.scheduled_date, i.start_time) for i in created]
        self.assertEqual(len(keys), 8)
        self.assertEqual(len(set(keys)), 8)

        inserted = self.service.regenerate_instances(saved.id)
        self.assertEqual(len(inserted), 4)
        keys = [(i.scheduled_date, i.start_time) for i in self.instances_of(saved.id)]
        self.assertEqual(len(keys), 8)
        self.assertEqual(len(set(keys)), 8)

    def test_get_missing_class(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.service.get_class("nope")
        self.assertEqual(ctx.exception.status_code, 404)


class TestUpdate(ServiceTestCase):
    def test_recurrence_change_reconciles(self) -> None:
        record, _ = self.create(_weekly_payload())
        (cancelled,) = self.instances_of(record.id, date_from=date(2026, 3, 10), date_to=date(2026, 3, 10))
        self.service.update_instance_status(cancelled.id, "cancelled")

        changes = validate_update_class({"recurrence": _weekly_payload(day="thursday")["recurrence"]})
        updated, inserted = self.service.update_class(record.id, changes)

        self.assertEqual(updated.recurrence.pattern.days[0].day, "thursday")
        self.assertEqual(len(inserted), 9)
        future = self.instances_of(record.id, date_from=TODAY)
        self.assertEqual({i.scheduled_date.weekday() for i in future}, {1, 3})
        self.assertEqual([i.id for i in future if i.scheduled_date.weekday() == 1], [cancelled.id])
        # past Tuesdays stay
        self.assertEqual(len(self.instances_of(record.id, date_to=date(2026, 3, 1))), 4)

    def test_title_change_does_not_reconcile(self) -> None:
        record, created = self.create(_weekly_payload())
        updated, inserted = self.service.update_class(record.id, validate_update_class({"title": "Pilates"}))

        self.assertEqual(updated.title, "Pilates")
        self.assertIsNone(inserted)
        self.assertEqual([i.id for i in self.instances_of(record.id)], [i.id for i in created])

    def test_inactive_class_not_reconciled(self) -> None:
        record, _ = self.create(_weekly_payload())
        self.service.update_class_status(record.id, "cancelled")

        changes = validate_update_class({"recurrence": _weekly_payload(day="thursday")["recurrence"]})
        _, inserted = self.service.update_class(record.id, changes)

        self.assertIsNone(inserted)
        self.assertEqual({i.scheduled_date.weekday() for i in self.instances_of(record.id)}, {1})

    def test_update_missing_class(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.update_class("nope", {"title": "x"})

    def test_regenerate(self) -> None:
        record, _ = self.create(_weekly_payload())
        inserted = self.service.regenerate_instances(record.id)
        self.assertEqual(len(inserted), 9)
        self.assertEqual(len(self.instances_of(record.id)), 13)

    def test_regenerate_one_time_class_is_noop(self) -> None:
        record, _ = self.create(_one_time_payload())
        self.assertEqual(self.service.regenerate_instances(record.id), [])


class TestStatusAndDelete(ServiceTestCase):
    def test_cancel_cascades_to_pristine_future(self) -> None:
        record, _ = self.create(_weekly_payload())
        (edited,) = self.instances_of(record.id, date_from=date(2026, 3, 17), date_to=date(2026, 3, 17))
        self.service.update_instance(edited.id, {"end_time": "10:30"})

        updated = self.service.update_class_status(record.id, "cancelled")

        self.assertEqual(updated.status, "cancelled")
        statuses = {i.scheduled_date: i.status for i in self.instances_of(record.id)}
        self.assertEqual(statuses[date(2026, 2, 24)], "scheduled")
        self.assertEqual(statuses[date(2026, 3, 17)], "scheduled")
        self.assertEqual(statuses[date(2026, 3, 3)], "cancelled")
        self.assertEqual(statuses[date(2026, 4, 28)], "cancelled")

    def test_delete_removes_instances(self) -> None:
        record, _ = self.create(_weekly_payload())
        other, _ = self.create(_weekly_payload(title="Other", day="friday"))

        removed = self.service.delete_class(record.id)

        self.assertEqual(removed, 13)
        self.assertEqual(self.instances_of(record.id), [])
        self.assertTrue(self.instances_of(other.id))
        with self.assertRaises(NotFoundError):
            self.service.get_class(record.id)
        with self.assertRaises(NotFoundError):
            self.service.delete_class(record.id)


class TestInstanceEdits(ServiceTestCase):
    def test_move_onto_taken_slot_conflicts(self) -> None:
        record, instances = self.create(_weekly_payload())
        with self.assertRaises(ConflictError) as ctx:
            self.service.update_instance(instances[5].id, {"scheduled_date": instances[6].scheduled_date})
        self.assertEqual(ctx.exception.status_code, 409)

    def test_move_to_free_slot(self) -> None:
        record, instances = self.create(_weekly_payload())
        moved = self.service.update_instance(
            instances[5].id, {"scheduled_date": date(2026, 3, 11), "start_time": "18:00", "end_time": "19:00"}
        )
        self.assertEqual(moved.scheduled_date, date(2026, 3, 11))
        self.assertTrue(moved.is_touched)

        # regeneration keeps the moved instance and refills its old Tuesday
        self.service.regenerate_instances(record.id)
        self.assertIsNotNone(self.instances.get(moved.id))
        tuesday = self.instances_of(record.id, date_from=date(2026, 3, 10), date_to=date(2026, 3, 10))
        self.assertEqual(len(tuesday), 1)

    def test_update_by_details(self) -> None:
        record, _ = self.create(_weekly_payload())
        updated = self.service.update_instance_by_details(
            record.id, date(2026, 3, 10), "09:00", {"status": "cancelled"}
        )
        self.assertEqual(updated.status, "cancelled")

        with self.assertRaises(NotFoundError):
            self.service.update_instance_by_details(record.id, date(2026, 3, 11), None, {"status": "cancelled"})

    def test_empty_edit_returns_instance_unchanged(self) -> None:
        _, instances = self.create(_weekly_payload())
        same = self.service.update_instance(instances[0].id, {"class_id": "other"})
        self.assertEqual(same, instances[0])

    def test_update_missing_instance(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.update_instance_status("nope", "cancelled")

    def test_update_all_instances(self) -> None:
        record, _ = self.create(_weekly_payload())
        count = self.service.update_all_instances(record.id, {"end_time": "10:15", "scheduled_date": date(2026, 1, 1)})
        self.assertEqual(count, 13)
        found = self.instances_of(record.id)
        self.assertTrue(all(i.end_time == "10:15" for i in found))
        self.assertEqual(found[0].scheduled_date, date(2026, 2, 3))

    def test_instances_by_class_paginated(self) -> None:
        record, _ = self.create(_weekly_payload())
        page, info = self.service.get_instances_by_class(record.id, page=2, limit=5)
        self.assertEqual([i.scheduled_date for i in page][0], date(2026, 3, 10))
        self.assertEqual((info.total, info.total_pages), (13, 3))


class TestQueries(ServiceTestCase):
    def test_calendar_view_merges_and_sorts(self) -> None:
        recurring, _ = self.create(_weekly_payload())
        one_time, _ = self.create(_one_time_payload(day="2026-03-03"))
        self.create(_one_time_payload(title="Later", day="2026-05-01"))

        entries = self.service.get_calendar_view(date(2026, 3, 1), date(2026, 3, 10))

        self.assertEqual(
            [(e.kind, e.scheduled_date, e.start_time) for e in entries],
            [
                ("one-time", date(2026, 3, 3), "08:00"),
                ("recurring-instance", date(2026, 3, 3), "09:00"),
                ("recurring-instance", date(2026, 3, 10), "09:00"),
            ],
        )
        self.assertEqual(entries[0].id, one_time.id)
        self.assertEqual(entries[1].title, "Yoga")
        self.assertEqual(entries[1].class_id, recurring.id)

    def test_calendar_view_skips_orphans(self) -> None:
        record, _ = self.create(_weekly_payload())
        self.classes.delete(record.id)
        self.assertEqual(self.service.get_calendar_view(date(2026, 2, 1), date(2026, 4, 30)), [])

    def test_get_instances_by_range_and_status(self) -> None:
        record, _ = self.create(_weekly_payload())
        self.service.update_instance_by_details(record.id, date(2026, 3, 3), "09:00", {"status": "completed"})
        done = self.service.get_instances(date(2026, 3, 1), date(2026, 3, 31), status="completed")
        self.assertEqual([i.scheduled_date for i in done], [date(2026, 3, 3)])
        self.assertEqual(len(self.service.get_instances(date(2026, 3, 1), date(2026, 3, 31))), 5)

    def test_list_classes_filters_and_pages(self) -> None:
        self.create(_weekly_payload(title="Yoga"))
        self.create(_weekly_payload(title="Spin"))
        self.create(_one_time_payload(title="Yoga workshop"))

        items, info = self.service.list_classes(ClassQuery(limit=2))
        self.assertEqual([c.title for c in items], ["Yoga workshop", "Spin"])
        self.assertEqual((info.total, info.total_pages), (3, 2))

        items, _ = self.service.list_classes(ClassQuery(search="yoga"))
        self.assertEqual({c.title for c in items}, {"Yoga", "Yoga workshop"})

        items, _ = self.service.list_classes(ClassQuery(is_recurring=False))
        self.assertEqual([c.title for c in items], ["Yoga workshop"])

        items, _ = self.service.list_classes(ClassQuery(start_date=date(2026, 5, 1), end_date=date(2026, 5, 31)))
        self.assertEqual(items, [])

    def test_list_classes_rejects_bad_page(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.list_classes(ClassQuery(page=0))
        with self.assertRaises(ValidationError):
            self.service.list_classes(ClassQuery(limit=101))


if __name__ == "__main__":
    unittest.main()
