"""
Central data model definitions used across the project.

This module defines the canonical structure of classes, recurrence rules and
class instances so that:
- the expander, reconciler, stores and CLI share the same field names
- each recurrence type carries exactly one payload shape (its "pattern")
- the JSON representation (camelCase, as sent by API clients) is converted
  in one place

The ``from_dict`` helpers trust their input. Raw client payloads go through
classcal.validation first, which rejects malformed data and then calls them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, ClassVar, Optional, Union


# index == date.weekday()
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "yearly", "custom")
INSTANCE_STATUSES = ("scheduled", "cancelled", "completed")
CLASS_STATUSES = ("active", "cancelled", "completed")


def time_to_minutes(hhmm: str) -> int:
    """
    Convert 'HH:MM' to minutes since midnight.
    Raises ValueError for invalid formats.
    """
    parts = hhmm.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {hhmm!r}")
    h = int(parts[0])
    m = int(parts[1])
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"Invalid time value: {hhmm!r}")
    return h * 60 + m


def to_date(value: Any) -> date:
    """
    Normalize a date-like value to a calendar date (local midnight).

    Accepts date, datetime and ISO strings ('2026-02-01' or
    '2026-02-01T10:30:00Z'). Aware datetimes are converted to local time
    first; any time-of-day component is then dropped.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_date(datetime.fromisoformat(text))


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Time slots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeSlot:
    """One wall-clock interval, e.g. 09:00-10:00."""

    start_time: str
    end_time: str

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeSlot:
        return cls(start_time=str(data["startTime"]).strip(), end_time=str(data["endTime"]).strip())

    def to_dict(self) -> dict[str, Any]:
        return {"startTime": self.start_time, "endTime": self.end_time}


def _slots_from(items: Any) -> tuple[TimeSlot, ...]:
    return tuple(TimeSlot.from_dict(x) for x in (items or []))


def _slots_to(slots: tuple[TimeSlot, ...]) -> list[dict[str, Any]]:
    return [s.to_dict() for s in slots]


@dataclass(frozen=True)
class DayWiseTimeSlot:
    """Slots for one weekday (weekly and custom patterns)."""

    day: str
    time_slots: tuple[TimeSlot, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DayWiseTimeSlot:
        return cls(day=str(data["day"]).strip().lower(), time_slots=_slots_from(data.get("timeSlots")))

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "timeSlots": _slots_to(self.time_slots)}


@dataclass(frozen=True)
class MonthlyDayWiseSlot:
    """Slots for one day of the month (1-31)."""

    day: int
    time_slots: tuple[TimeSlot, ...]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MonthlyDayWiseSlot:
        return cls(day=int(data["day"]), time_slots=_slots_from(data.get("timeSlots")))

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "timeSlots": _slots_to(self.time_slots)}


# ---------------------------------------------------------------------------
# Recurrence patterns (one payload shape per recurrence type)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyPattern:
    time_slots: tuple[TimeSlot, ...]

    kind: ClassVar[str] = "daily"

    def to_dict(self) -> dict[str, Any]:
        return {"dailyTimeSlots": _slots_to(self.time_slots)}


@dataclass(frozen=True)
class WeeklyPattern:
    days: tuple[DayWiseTimeSlot, ...]

    kind: ClassVar[str] = "weekly"

    def slots_by_weekday(self) -> dict[int, tuple[TimeSlot, ...]]:
        """Map date.weekday() -> slots, merging repeated day entries."""
        out: dict[int, tuple[TimeSlot, ...]] = {}
        for entry in self.days:
            if entry.day not in WEEKDAYS:
                continue
            idx = WEEKDAYS.index(entry.day)
            out[idx] = out.get(idx, ()) + entry.time_slots
        return out

    def to_dict(self) -> dict[str, Any]:
        return {"dayWiseTimeSlots": [d.to_dict() for d in self.days]}


@dataclass(frozen=True)
class CustomPattern(WeeklyPattern):
    """Weekly slots repeated only every ``interval`` weeks."""

    interval: int = 1

    kind: ClassVar[str] = "custom"

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["customInterval"] = self.interval
        return out


@dataclass(frozen=True)
class MonthlyPattern:
    days: tuple[MonthlyDayWiseSlot, ...]

    kind: ClassVar[str] = "monthly"

    @classmethod
    def from_day_list(cls, days: list[int], time_slots: tuple[TimeSlot, ...]) -> MonthlyPattern:
        """
        Build the day-wise form from the legacy payload
        (monthlyDays + one monthlyTimeSlots list shared by all days).
        """
        return cls(days=tuple(MonthlyDayWiseSlot(day=int(d), time_slots=time_slots) for d in days))

    def slots_by_day(self) -> dict[int, tuple[TimeSlot, ...]]:
        out: dict[int, tuple[TimeSlot, ...]] = {}
        for entry in self.days:
            out[entry.day] = out.get(entry.day, ()) + entry.time_slots
        return out

    def to_dict(self) -> dict[str, Any]:
        return {"monthlyDayWiseSlots": [d.to_dict() for d in self.days]}


@dataclass(frozen=True)
class YearlyPattern:
    month: int  # 1-12
    day: int
    time_slots: tuple[TimeSlot, ...]

    kind: ClassVar[str] = "yearly"

    def to_dict(self) -> dict[str, Any]:
        # JSON clients send a zero-based month (0 = January)
        return {
            "yearlyMonth": self.month - 1,
            "yearlyDay": self.day,
            "yearlyTimeSlots": _slots_to(self.time_slots),
        }


Pattern = Union[DailyPattern, WeeklyPattern, CustomPattern, MonthlyPattern, YearlyPattern]


def _pattern_from_dict(kind: str, data: dict[str, Any]) -> Optional[Pattern]:
    if kind == "daily":
        return DailyPattern(time_slots=_slots_from(data.get("dailyTimeSlots")))
    if kind in ("weekly", "custom"):
        days = tuple(DayWiseTimeSlot.from_dict(d) for d in data.get("dayWiseTimeSlots") or [])
        if kind == "weekly":
            return WeeklyPattern(days=days)
        return CustomPattern(days=days, interval=int(data.get("customInterval") or 1))
    if kind == "monthly":
        day_wise = data.get("monthlyDayWiseSlots") or []
        if day_wise:
            return MonthlyPattern(days=tuple(MonthlyDayWiseSlot.from_dict(d) for d in day_wise))
        return MonthlyPattern.from_day_list(
            list(data.get("monthlyDays") or []), _slots_from(data.get("monthlyTimeSlots"))
        )
    if kind == "yearly":
        return YearlyPattern(
            month=int(data.get("yearlyMonth") or 0) + 1,
            day=int(data.get("yearlyDay") or 1),
            time_slots=_slots_from(data.get("yearlyTimeSlots")),
        )
    return None


@dataclass(frozen=True)
class RecurrenceConfig:
    """
    The abstract rule describing how a class repeats.

    ``pattern`` is None for type "none"; otherwise its ``kind`` is the type.
    """

    start_date: date
    pattern: Optional[Pattern] = None
    end_date: Optional[date] = None
    occurrences: Optional[int] = None

    @property
    def type(self) -> str:
        return self.pattern.kind if self.pattern is not None else "none"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrenceConfig:
        kind = str(data.get("type", "none")).strip().lower()
        end_raw = data.get("endDate")
        occ_raw = data.get("occurrences")
        return cls(
            start_date=to_date(data["startDate"]),
            pattern=_pattern_from_dict(kind, data),
            end_date=to_date(end_raw) if end_raw else None,
            occurrences=int(occ_raw) if occ_raw is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "startDate": self.start_date.isoformat()}
        if self.end_date is not None:
            out["endDate"] = self.end_date.isoformat()
        if self.occurrences is not None:
            out["occurrences"] = self.occurrences
        if self.pattern is not None:
            out.update(self.pattern.to_dict())
        return out


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassInstance:
    """
    One concrete occurrence of a class on one date and time slot.

    Unsaved instances (fresh from the expander) have no id or timestamps.
    """

    class_id: str
    scheduled_date: date
    start_time: str
    end_time: str
    status: str = "scheduled"
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, date, str]:
        return (self.class_id, self.scheduled_date, self.start_time)

    @property
    def is_touched(self) -> bool:
        return self.updated_at != self.created_at

    @property
    def is_pristine(self) -> bool:
        """Scheduled and never edited since creation; safe to regenerate."""
        return self.status == "scheduled" and not self.is_touched

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClassInstance:
        return cls(
            id=data.get("id"),
            class_id=str(data["classId"]),
            scheduled_date=to_date(data["scheduledDate"]),
            start_time=str(data["startTime"]),
            end_time=str(data["endTime"]),
            status=str(data.get("status", "scheduled")),
            created_at=_to_datetime(data.get("createdAt")),
            updated_at=_to_datetime(data.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "classId": self.class_id,
            "scheduledDate": self.scheduled_date.isoformat(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


# field name in ClassRecord -> camelCase key
CLASS_FIELDS = {
    "title": "title",
    "description": "description",
    "instructor": "instructor",
    "location": "location",
    "capacity": "capacity",
    "availability": "availability",
    "is_recurring": "isRecurring",
    "scheduled_date": "scheduledDate",
    "start_time": "startTime",
    "end_time": "endTime",
    "recurrence": "recurrence",
    "status": "status",
}


@dataclass(frozen=True)
class ClassRecord:
    """
    A class (recurring or one-time). For recurring classes ``recurrence`` is
    the single source of truth; its instances are derived from it.
    """

    title: str
    is_recurring: bool = False
    description: Optional[str] = None
    instructor: Optional[str] = None
    location: Optional[str] = None
    capacity: Optional[int] = None
    availability: bool = True
    scheduled_date: Optional[date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    recurrence: Optional[RecurrenceConfig] = None
    status: str = "active"
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClassRecord:
        rec = data.get("recurrence")
        sched = data.get("scheduledDate")
        return cls(
            id=data.get("id"),
            title=str(data.get("title", "")),
            description=data.get("description"),
            instructor=data.get("instructor"),
            location=data.get("location"),
            capacity=data.get("capacity"),
            availability=bool(data.get("availability", True)),
            is_recurring=bool(data.get("isRecurring", False)),
            scheduled_date=to_date(sched) if sched else None,
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            recurrence=RecurrenceConfig.from_dict(rec) if rec else None,
            status=str(data.get("status", "active")),
            created_at=_to_datetime(data.get("createdAt")),
            updated_at=_to_datetime(data.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "instructor": self.instructor,
            "location": self.location,
            "capacity": self.capacity,
            "availability": self.availability,
            "isRecurring": self.is_recurring,
            "scheduledDate": _iso(self.scheduled_date),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "recurrence": self.recurrence.to_dict() if self.recurrence is not None else None,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
