"""
Class lifecycle service.

Orchestrates the stores, the expander and the reconciler:

    create_class          store the class, expand + bulk insert its instances
    update_class          merge fields, reconcile if the rule may have changed
    update_class_status   cascade cancelled/completed to pristine future instances
    delete_class          delete the class and all its instances
    regenerate_instances  explicit reconciliation

plus the read side (listing, calendar view) and per-instance edits.

Every write that involves a class's instances runs under that class's lock,
so reconciliation never interleaves with another writer for the same class.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional

from classcal.config import Settings
from classcal.errors import ConflictError, NotFoundError, ValidationError
from classcal.expander import expand
from classcal.model import ClassInstance, ClassRecord, time_to_minutes
from classcal.reconcile import ClassLocks, Reconciler
from classcal.storage import ClassStore, InstanceFilter, InstanceStore

logger = logging.getLogger(__name__)

# changes to any of these may change which instances the rule produces
RECURRENCE_FIELDS = ("recurrence", "is_recurring", "start_time", "end_time")

# instance fields an edit may change
INSTANCE_EDIT_FIELDS = ("status", "scheduled_date", "start_time", "end_time")

# bulk edits never change the (date, start time) identity of an instance
BULK_EDIT_FIELDS = ("status", "end_time")

DEFAULT_INSTANCE_PAGE = 50


@dataclass(frozen=True)
class Pagination:
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class ClassQuery:
    """Filters for list_classes(). Unset fields do not filter."""

    status: Optional[str] = None
    is_recurring: Optional[bool] = None
    availability: Optional[bool] = None
    search: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    page: int = 1
    limit: Optional[int] = None


@dataclass(frozen=True)
class CalendarEntry:
    """One row of the calendar view: a one-time class or a recurring instance."""

    kind: str  # "one-time" | "recurring-instance"
    id: str
    class_id: str
    title: str
    scheduled_date: date
    start_time: str
    end_time: str
    status: str
    description: Optional[str] = None
    instructor: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "classId": self.class_id,
            "type": self.kind,
            "title": self.title,
            "description": self.description,
            "instructor": self.instructor,
            "location": self.location,
            "capacity": self.capacity,
            "scheduledDate": self.scheduled_date.isoformat(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "status": self.status,
        }


def _check_page(page: int, limit: int, max_limit: int) -> None:
    if page < 1:
        raise ValidationError("Invalid input data", [{"field": "page", "message": "Page must be greater than 0"}])
    if limit < 1 or limit > max_limit:
        raise ValidationError(
            "Invalid input data", [{"field": "limit", "message": f"Limit must be between 1 and {max_limit}"}]
        )


def _matches_search(record: ClassRecord, needle: str) -> bool:
    hay = f"{record.title} {record.instructor or ''}".lower()
    return needle in hay


def _overlaps_range(record: ClassRecord, start: date, end: date) -> bool:
    """One-time class dated in range, or recurring rule active during it."""
    if not record.is_recurring:
        return record.scheduled_date is not None and start <= record.scheduled_date <= end
    rec = record.recurrence
    if rec is None:
        return False
    if rec.start_date > end:
        return False
    return rec.end_date is None or rec.end_date >= start


class ClassService:
    def __init__(
        self,
        classes: ClassStore,
        instances: InstanceStore,
        settings: Optional[Settings] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.classes = classes
        self.instances = instances
        self.settings = settings or Settings()
        self._today = today or date.today
        self.locks = ClassLocks()
        self.reconciler = Reconciler(instances, hard_cap=self.settings.hard_cap)

    def today(self) -> date:
        return self._today()

    def _require_class(self, class_id: str) -> ClassRecord:
        record = self.classes.get(class_id)
        if record is None:
            raise NotFoundError("Class")
        return record

    # ------------------------------------------------------------------
    # Classes
    # ------------------------------------------------------------------

    def create_class(self, record: ClassRecord) -> tuple[ClassRecord, Optional[list[ClassInstance]]]:
        """
        Store a new class. Recurring classes get their instances generated
        and bulk-inserted right away (nothing exists yet, so no reconciliation).
        """
        saved = self.classes.insert(record)

        instances: Optional[list[ClassInstance]] = None
        if saved.is_recurring and saved.recurrence is not None:
            with self.locks.hold(saved.id):
                generated = expand(saved.recurrence, saved.id, self.settings.hard_cap)
                instances = self.instances.insert_many(generated)
            logger.info("Created recurring class %s with %d instances", saved.id, len(instances))
        else:
            logger.info("Created class %s", saved.id)

        return saved, instances

    def get_class(self, class_id: str) -> ClassRecord:
        return self._require_class(class_id)

    def list_classes(self, query: Optional[ClassQuery] = None) -> tuple[list[ClassRecord], Pagination]:
        """Filtered classes, newest first, one page at a time."""
        query = query or ClassQuery()
        limit = query.limit if query.limit is not None else self.settings.page_limit
        _check_page(query.page, limit, self.settings.max_page_limit)

        needle = (query.search or "").strip().lower()
        found: list[ClassRecord] = []
        for record in self.classes.all():
            if query.status is not None and record.status != query.status:
                continue
            if query.is_recurring is not None and record.is_recurring != query.is_recurring:
                continue
            if query.availability is not None and record.availability != query.availability:
                continue
            if needle and not _matches_search(record, needle):
                continue
            if query.start_date is not None and query.end_date is not None:
                if not _overlaps_range(record, query.start_date, query.end_date):
                    continue
            found.append(record)

        found.sort(key=lambda r: r.created_at or datetime.min, reverse=True)
        skip = (query.page - 1) * limit
        return found[skip : skip + limit], Pagination(total=len(found), page=query.page, limit=limit)

    def update_class(
        self, class_id: str, changes: dict[str, Any]
    ) -> tuple[ClassRecord, Optional[list[ClassInstance]]]:
        """
        Merge field changes into a class. If the class is recurring and
        active and the change set touches the recurrence, its future
        instances are reconciled.
        """
        with self.locks.hold(class_id):
            updated = self.classes.update(class_id, changes)
            if updated is None:
                raise NotFoundError("Class")

            instances: Optional[list[ClassInstance]] = None
            if (
                updated.is_recurring
                and updated.status == "active"
                and any(changes.get(k) for k in RECURRENCE_FIELDS)
            ):
                instances = self._reconcile(updated)

        return updated, instances

    def update_class_status(self, class_id: str, status: str) -> ClassRecord:
        """
        Set the class status. Cancelling or completing a class moves every
        pristine future instance to the same status; edited instances keep
        theirs.
        """
        with self.locks.hold(class_id):
            updated = self.classes.update(class_id, {"status": status})
            if updated is None:
                raise NotFoundError("Class")

            if status in ("cancelled", "completed"):
                moved = self.instances.update_many(
                    InstanceFilter(class_id=class_id, date_from=self.today(), pristine=True),
                    {"status": status},
                )
                logger.info("Class %s %s; %d future instances updated", class_id, status, len(moved))

        return updated

    def delete_class(self, class_id: str) -> int:
        """Delete a class and all of its instances. Returns the number of instances removed."""
        with self.locks.hold(class_id):
            if not self.classes.delete(class_id):
                raise NotFoundError("Class")
            removed = self.instances.delete_many(InstanceFilter(class_id=class_id))
        logger.info("Deleted class %s and %d instances", class_id, removed)
        return removed

    def regenerate_instances(self, class_id: str) -> list[ClassInstance]:
        """Reconcile a class's future instances with its current rule."""
        with self.locks.hold(class_id):
            record = self._require_class(class_id)
            if not record.is_recurring or record.recurrence is None:
                return []
            return self._reconcile(record)

    def _reconcile(self, record: ClassRecord) -> list[ClassInstance]:
        if record.recurrence is None:
            return []
        return self.reconciler.reconcile(record.id, record.recurrence, self.today())

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def get_instances(self, start: date, end: date, status: Optional[str] = None) -> list[ClassInstance]:
        """All instances dated start..end (inclusive), ordered by date and start time."""
        return self.instances.find(InstanceFilter(date_from=start, date_to=end, status=status))

    def get_instances_by_class(
        self, class_id: str, page: int = 1, limit: Optional[int] = None
    ) -> tuple[list[ClassInstance], Pagination]:
        """One class's instances, ordered by date and start time, one page at a time."""
        if limit is None:
            limit = min(DEFAULT_INSTANCE_PAGE, self.settings.max_page_limit)
        _check_page(page, limit, self.settings.max_page_limit)
        found = self.instances.find(InstanceFilter(class_id=class_id))
        skip = (page - 1) * limit
        return found[skip : skip + limit], Pagination(total=len(found), page=page, limit=limit)

    def update_instance(self, instance_id: str, changes: dict[str, Any]) -> ClassInstance:
        """
        Edit one instance. Any edit marks it as touched, so later
        regeneration leaves it alone.

        Moving an instance onto a date and start time its class already
        occupies raises ConflictError.
        """
        changes = {k: v for k, v in changes.items() if k in INSTANCE_EDIT_FIELDS}
        current = self.instances.get(instance_id)
        if current is None:
            raise NotFoundError("Instance")
        if not changes:
            return current

        with self.locks.hold(current.class_id):
            new_date = changes.get("scheduled_date", current.scheduled_date)
            new_start = changes.get("start_time", current.start_time)
            if (new_date, new_start) != (current.scheduled_date, current.start_time):
                clash = self.instances.find_one(
                    InstanceFilter(
                        class_id=current.class_id, date_from=new_date, date_to=new_date, start_time=new_start
                    )
                )
                if clash is not None and clash.id != instance_id:
                    raise ConflictError(
                        f"Class {current.class_id} already has an instance on {new_date.isoformat()} at {new_start}"
                    )
            updated = self.instances.update_one(instance_id, changes)
        if updated is None:
            raise NotFoundError("Instance")
        return updated

    def update_instance_status(self, instance_id: str, status: str) -> ClassInstance:
        return self.update_instance(instance_id, {"status": status})

    def update_instance_by_details(
        self,
        class_id: str,
        scheduled_date: date,
        start_time: Optional[str],
        changes: dict[str, Any],
    ) -> ClassInstance:
        """Edit the instance identified by class, date and (optionally) start time."""
        target = self.instances.find_one(
            InstanceFilter(class_id=class_id, date_from=scheduled_date, date_to=scheduled_date, start_time=start_time)
        )
        if target is None:
            raise NotFoundError("Instance")
        return self.update_instance(target.id, changes)

    def update_all_instances(self, class_id: str, changes: dict[str, Any]) -> int:
        """Apply the same edit to every instance of a class; returns how many changed."""
        changes = {k: v for k, v in changes.items() if k in BULK_EDIT_FIELDS}
        if not changes:
            return 0
        with self.locks.hold(class_id):
            updated = self.instances.update_many(InstanceFilter(class_id=class_id), changes)
        return len(updated)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def get_calendar_view(self, start: date, end: date) -> list[CalendarEntry]:
        """
        One-time classes and recurring instances dated start..end, merged
        and sorted by date, then start time.
        """
        entries: list[CalendarEntry] = []

        by_id: dict[str, ClassRecord] = {}
        for record in self.classes.all():
            by_id[record.id] = record
            if record.is_recurring or record.scheduled_date is None:
                continue
            if not start <= record.scheduled_date <= end:
                continue
            entries.append(
                CalendarEntry(
                    kind="one-time",
                    id=record.id,
                    class_id=record.id,
                    title=record.title,
                    description=record.description,
                    instructor=record.instructor,
                    location=record.location,
                    capacity=record.capacity,
                    scheduled_date=record.scheduled_date,
                    start_time=record.start_time or "",
                    end_time=record.end_time or "",
                    status=record.status,
                )
            )

        for inst in self.get_instances(start, end):
            owner = by_id.get(inst.class_id)
            # orphaned instances are skipped
            if owner is None:
                continue
            entries.append(
                CalendarEntry(
                    kind="recurring-instance",
                    id=inst.id,
                    class_id=owner.id,
                    title=owner.title,
                    description=owner.description,
                    instructor=owner.instructor,
                    location=owner.location,
                    capacity=owner.capacity,
                    scheduled_date=inst.scheduled_date,
                    start_time=inst.start_time,
                    end_time=inst.end_time,
                    status=inst.status,
                )
            )

        entries.sort(key=lambda e: (e.scheduled_date, time_to_minutes(e.start_time) if e.start_time else -1))
        return entries
