"""
Persistent storage for classes and their instances.

Two collections, each behind a small store interface:

    ClassStore      identity-keyed CRUD with field-merge updates
    InstanceStore   bulk insert, filtered find/update/delete

Design rationale:
- the expander and reconciler never touch a global connection; they get
  the store they should use passed in, so tests can use the in-memory
  stores below
- the CLI uses JsonDatabase, which keeps both collections in one JSON file
  and rewrites it atomically after every change

Timestamps: a record gets created_at == updated_at on insert. Every later
update moves updated_at forward, so "updated_at != created_at" tells whether
an instance was touched after it was generated.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from classcal.errors import StoreError
from classcal.model import ClassInstance, ClassRecord, time_to_minutes

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _new_id() -> str:
    return uuid.uuid4().hex


def _next_stamp(clock: Clock, previous: Optional[datetime]) -> datetime:
    """Current time, strictly after ``previous``."""
    now = clock()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def instance_sort_key(inst: ClassInstance) -> tuple[date, int]:
    return (inst.scheduled_date, time_to_minutes(inst.start_time))


@dataclass(frozen=True)
class InstanceFilter:
    """
    Compound filter over instances. Unset fields match everything.

    Dates are inclusive. ``pristine=True`` matches scheduled instances that
    were never updated; ``pristine=False`` matches the protected ones
    (status changed or updated after creation).
    """

    class_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[str] = None
    start_time: Optional[str] = None
    pristine: Optional[bool] = None

    def matches(self, inst: ClassInstance) -> bool:
        if self.class_id is not None and inst.class_id != self.class_id:
            return False
        if self.date_from is not None and inst.scheduled_date < self.date_from:
            return False
        if self.date_to is not None and inst.scheduled_date > self.date_to:
            return False
        if self.status is not None and inst.status != self.status:
            return False
        if self.start_time is not None and inst.start_time != self.start_time:
            return False
        if self.pristine is not None and inst.is_pristine != self.pristine:
            return False
        return True


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class InstanceStore(ABC):
    @abstractmethod
    def insert_many(self, records: Iterable[ClassInstance]) -> list[ClassInstance]:
        """Store unsaved records; returns them with ids and timestamps."""

    @abstractmethod
    def find(self, flt: InstanceFilter) -> list[ClassInstance]:
        """Matching records ordered by (scheduled_date, start_time)."""

    @abstractmethod
    def get(self, instance_id: str) -> Optional[ClassInstance]:
        ...

    @abstractmethod
    def delete_many(self, flt: InstanceFilter) -> int:
        ...

    @abstractmethod
    def update_one(self, instance_id: str, changes: dict[str, Any]) -> Optional[ClassInstance]:
        ...

    @abstractmethod
    def update_many(self, flt: InstanceFilter, changes: dict[str, Any]) -> list[ClassInstance]:
        ...

    def find_one(self, flt: InstanceFilter) -> Optional[ClassInstance]:
        found = self.find(flt)
        return found[0] if found else None


class ClassStore(ABC):
    @abstractmethod
    def insert(self, record: ClassRecord) -> ClassRecord:
        ...

    @abstractmethod
    def get(self, class_id: str) -> Optional[ClassRecord]:
        ...

    @abstractmethod
    def update(self, class_id: str, changes: dict[str, Any]) -> Optional[ClassRecord]:
        """Merge ``changes`` into the record; None if it does not exist."""

    @abstractmethod
    def delete(self, class_id: str) -> bool:
        ...

    @abstractmethod
    def all(self) -> list[ClassRecord]:
        ...


# ---------------------------------------------------------------------------
# In-memory backends
# ---------------------------------------------------------------------------


class MemoryInstanceStore(InstanceStore):
    def __init__(
        self,
        clock: Optional[Clock] = None,
        on_change: Optional[Callable[[], None]] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._clock = clock or datetime.now
        self._on_change = on_change
        self._lock = lock or threading.RLock()
        self._items: dict[str, ClassInstance] = {}

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def load(self, records: Iterable[ClassInstance]) -> None:
        """Replace the contents with already-stored records (no timestamps touched)."""
        with self._lock:
            self._items = {r.id: r for r in records if r.id}

    def dump(self) -> list[ClassInstance]:
        with self._lock:
            return sorted(self._items.values(), key=instance_sort_key)

    def insert_many(self, records: Iterable[ClassInstance]) -> list[ClassInstance]:
        with self._lock:
            now = self._clock()
            saved = [replace(r, id=_new_id(), created_at=now, updated_at=now) for r in records]
            if not saved:
                return []
            for r in saved:
                self._items[r.id] = r
            self._changed()
        return saved

    def find(self, flt: InstanceFilter) -> list[ClassInstance]:
        with self._lock:
            found = [r for r in self._items.values() if flt.matches(r)]
        return sorted(found, key=instance_sort_key)

    def get(self, instance_id: str) -> Optional[ClassInstance]:
        with self._lock:
            return self._items.get(instance_id)

    def delete_many(self, flt: InstanceFilter) -> int:
        with self._lock:
            doomed = [k for k, r in self._items.items() if flt.matches(r)]
            for k in doomed:
                del self._items[k]
            if doomed:
                self._changed()
        return len(doomed)

    def _apply(self, inst: ClassInstance, changes: dict[str, Any]) -> ClassInstance:
        updated = replace(inst, **changes, updated_at=_next_stamp(self._clock, inst.updated_at))
        self._items[inst.id] = updated
        return updated

    def update_one(self, instance_id: str, changes: dict[str, Any]) -> Optional[ClassInstance]:
        with self._lock:
            inst = self._items.get(instance_id)
            if inst is None:
                return None
            updated = self._apply(inst, changes)
            self._changed()
        return updated

    def update_many(self, flt: InstanceFilter, changes: dict[str, Any]) -> list[ClassInstance]:
        with self._lock:
            targets = [r for r in self._items.values() if flt.matches(r)]
            updated = [self._apply(r, changes) for r in targets]
            if updated:
                self._changed()
        return sorted(updated, key=instance_sort_key)


class MemoryClassStore(ClassStore):
    def __init__(
        self,
        clock: Optional[Clock] = None,
        on_change: Optional[Callable[[], None]] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._clock = clock or datetime.now
        self._on_change = on_change
        self._lock = lock or threading.RLock()
        self._items: dict[str, ClassRecord] = {}

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def load(self, records: Iterable[ClassRecord]) -> None:
        with self._lock:
            self._items = {r.id: r for r in records if r.id}

    def insert(self, record: ClassRecord) -> ClassRecord:
        with self._lock:
            now = self._clock()
            saved = replace(record, id=_new_id(), created_at=now, updated_at=now)
            self._items[saved.id] = saved
            self._changed()
        return saved

    def get(self, class_id: str) -> Optional[ClassRecord]:
        with self._lock:
            return self._items.get(class_id)

    def update(self, class_id: str, changes: dict[str, Any]) -> Optional[ClassRecord]:
        with self._lock:
            current = self._items.get(class_id)
            if current is None:
                return None
            updated = replace(current, **changes, updated_at=_next_stamp(self._clock, current.updated_at))
            self._items[class_id] = updated
            self._changed()
        return updated

    def delete(self, class_id: str) -> bool:
        with self._lock:
            if self._items.pop(class_id, None) is None:
                return False
            self._changed()
        return True

    def all(self) -> list[ClassRecord]:
        with self._lock:
            return list(self._items.values())


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------


class JsonDatabase:
    """
    Both collections in one JSON file:

        {"classes": [...], "instances": [...]}

    A missing file is an empty database. An unreadable file raises
    StoreError instead of silently starting over, because that would drop
    every stored class on the next write.
    """

    def __init__(self, path: str | Path, clock: Optional[Clock] = None) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        # one lock for both collections: a change to either rewrites the whole file
        self.classes = MemoryClassStore(clock=clock, on_change=self.save, lock=self._lock)
        self.instances = MemoryInstanceStore(clock=clock, on_change=self.save, lock=self._lock)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            classes = [ClassRecord.from_dict(x) for x in data.get("classes", [])]
            instances = [ClassInstance.from_dict(x) for x in data.get("instances", [])]
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read database {self.path}: {e}") from e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Database {self.path} contains invalid records: {e}") from e

        self.classes.load(classes)
        self.instances.load(instances)
        logger.debug("Loaded %d classes and %d instances from %s", len(classes), len(instances), self.path)

    def save(self) -> None:
        with self._lock:
            payload = {
                "classes": [c.to_dict() for c in self.classes.all()],
                "instances": [i.to_dict() for i in self.instances.dump()],
            }
            folder = self.path.resolve().parent
            try:
                folder.mkdir(parents=True, exist_ok=True)
                # Atomic write
                with tempfile.NamedTemporaryFile(
                    "w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp"
                ) as tf:
                    json.dump(payload, tf, ensure_ascii=False, indent=2)
                    tmp_name = tf.name
                os.replace(tmp_name, self.path)
            except OSError as e:
                raise StoreError(f"Cannot write database {self.path}: {e}") from e
