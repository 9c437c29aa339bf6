"""
Reconciliation: regenerate a class's future instances after its recurrence
rule changed, without destroying instances someone edited by hand.

An instance dated today or later is
- protected if its status is not "scheduled" or it was updated after it was
  created (an exception to the rule; never overwritten here)
- pristine otherwise (a disposable projection of the rule)

reconcile() finds the protected instances, deletes the pristine ones,
re-expands the full rule from its own start date, keeps the candidates
from today on, drops every candidate whose (date, start time) is already
held by a protected instance and bulk-inserts the rest.

The sequence is not atomic. Callers must not run two reconciliations (or a
reconciliation and an instance edit) for the same class at the same time;
ClassLocks gives them one lock per class id for that.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator

from classcal.expander import DEFAULT_HARD_CAP, expand
from classcal.model import ClassInstance, RecurrenceConfig, time_to_minutes
from classcal.storage import InstanceFilter, InstanceStore

logger = logging.getLogger(__name__)


class ClassLocks:
    """
    One mutual-exclusion lock per class id.

    An entry lives while at least one thread holds or waits for it; the
    last one out removes it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._users: dict[str, int] = {}

    @contextmanager
    def hold(self, class_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(class_id)
            if lock is None:
                lock = self._locks[class_id] = threading.RLock()
            self._users[class_id] = self._users.get(class_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[class_id] -= 1
                if self._users[class_id] == 0:
                    del self._users[class_id]
                    del self._locks[class_id]

    def __contains__(self, class_id: str) -> bool:
        with self._guard:
            return class_id in self._locks


def future_candidates(
    recurrence: RecurrenceConfig, class_id: str, today: date, hard_cap: int = DEFAULT_HARD_CAP
) -> list[ClassInstance]:
    """The rule's instances dated today or later, expanded from its real start date."""
    return [c for c in expand(recurrence, class_id, hard_cap) if c.scheduled_date >= today]


def drop_collisions(candidates: list[ClassInstance], protected: list[ClassInstance]) -> list[ClassInstance]:
    taken = {(p.scheduled_date, time_to_minutes(p.start_time)) for p in protected}
    return [c for c in candidates if (c.scheduled_date, time_to_minutes(c.start_time)) not in taken]


class Reconciler:
    def __init__(self, store: InstanceStore, hard_cap: int = DEFAULT_HARD_CAP) -> None:
        self.store = store
        self.hard_cap = hard_cap

    def reconcile(self, class_id: str, recurrence: RecurrenceConfig, today: date) -> list[ClassInstance]:
        """Regenerate future instances; returns the newly inserted ones."""
        protected = self.store.find(InstanceFilter(class_id=class_id, date_from=today, pristine=False))

        deleted = self.store.delete_many(InstanceFilter(class_id=class_id, date_from=today, pristine=True))

        candidates = future_candidates(recurrence, class_id, today, self.hard_cap)
        fresh = drop_collisions(candidates, protected)

        inserted = self.store.insert_many(fresh) if fresh else []

        logger.info(
            "Reconciled class %s: kept %d exceptions, removed %d, inserted %d",
            class_id,
            len(protected),
            deleted,
            len(inserted),
        )
        return inserted
