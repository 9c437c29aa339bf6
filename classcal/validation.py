"""
Validation of client payloads (camelCase JSON dicts).

Payload shapes are pydantic models. Everything that reaches the expander
has passed through here, so the engine can rely on:
- every time slot is 'HH:MM' (normalized to two-digit hours) with start < end
- no two slots of one day share a start time, and no day is listed twice
- every recurrence carries the payload its type needs
- day names, days of month and months are in range

pydantic errors are mapped to the ``{field, message}`` list carried by
classcal.errors.ValidationError.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from classcal.errors import ValidationError
from classcal.model import (
    CustomPattern,
    DailyPattern,
    DayWiseTimeSlot,
    MonthlyDayWiseSlot,
    MonthlyPattern,
    Pattern,
    RecurrenceConfig,
    ClassRecord,
    TimeSlot,
    WeeklyPattern,
    YearlyPattern,
    time_to_minutes,
    to_date,
)

TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"

MAX_TITLE = 200
MAX_DESCRIPTION = 2000
MAX_INSTRUCTOR = 100
MAX_LOCATION = 200
MAX_CAPACITY = 1000
MAX_CUSTOM_INTERVAL = 52


def _pad_time(value: str) -> str:
    minutes = time_to_minutes(value)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


def _date_or_none(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_date(value)


HHMM = Annotated[str, StringConstraints(strip_whitespace=True, pattern=TIME_PATTERN), AfterValidator(_pad_time)]
LooseDate = Annotated[Optional[date], BeforeValidator(_date_or_none)]
Weekday = Annotated[
    Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"],
    BeforeValidator(_lower),
]
DayOfMonth = Annotated[int, Field(strict=True, ge=1, le=31)]
ClassStatus = Annotated[Literal["active", "cancelled", "completed"], BeforeValidator(_lower)]
InstanceStatus = Annotated[Literal["scheduled", "cancelled", "completed"], BeforeValidator(_lower)]

_HHMM = TypeAdapter(HHMM)
_CLASS_STATUS = TypeAdapter(ClassStatus)
_INSTANCE_STATUS = TypeAdapter(InstanceStatus)


def normalize_time(value: Any) -> str:
    """'9:05' -> '09:05'. Raises ValueError if not HH:MM."""
    return _HHMM.validate_python(value)


def parse_date(value: Any) -> date:
    """Parse a date (ISO string or date/datetime). Raises ValueError."""
    if _date_or_none(value) is None:
        raise ValueError("empty date")
    return to_date(value)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def _distinct_starts(slots: list[TimeSlotIn]) -> list[TimeSlotIn]:
    seen: set[str] = set()
    for slot in slots:
        if slot.start_time in seen:
            raise ValueError(f"Two time slots start at {slot.start_time}")
        seen.add(slot.start_time)
    return slots


def _distinct_days(days: list[Any]) -> None:
    seen: set[Any] = set()
    for day in days:
        if day in seen:
            raise ValueError(f"Day {day} is listed more than once")
        seen.add(day)


# ---------------------------------------------------------------------------
# Time slots
# ---------------------------------------------------------------------------


class TimeSlotIn(_Payload):
    start_time: HHMM = Field(alias="startTime")
    end_time: HHMM = Field(alias="endTime")

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v, info):
        start = info.data.get("start_time")
        if start and time_to_minutes(v) <= time_to_minutes(start):
            raise ValueError("Start time must be before end time")
        return v

    def to_slot(self) -> TimeSlot:
        return TimeSlot(start_time=self.start_time, end_time=self.end_time)


Slots = Annotated[list[TimeSlotIn], Field(min_length=1), AfterValidator(_distinct_starts)]


def _slots(items: list[TimeSlotIn]) -> tuple[TimeSlot, ...]:
    return tuple(s.to_slot() for s in items)


class DayWiseIn(_Payload):
    day: Weekday
    time_slots: Slots = Field(alias="timeSlots")


class MonthlyDayIn(_Payload):
    day: DayOfMonth
    time_slots: Slots = Field(alias="timeSlots")


# ---------------------------------------------------------------------------
# Recurrence (discriminated on "type")
# ---------------------------------------------------------------------------


class _RecurrenceIn(_Payload):
    start_date: LooseDate = Field(alias="startDate")
    end_date: LooseDate = Field(default=None, alias="endDate")
    occurrences: Optional[int] = Field(default=None, strict=True, ge=1)

    @field_validator("start_date")
    @classmethod
    def validate_start_date(cls, v):
        if v is None:
            raise ValueError("Recurrence start date is required")
        return v

    @model_validator(mode="after")
    def validate_end_date(self):
        if self.end_date is not None and self.start_date is not None and self.end_date <= self.start_date:
            raise ValueError("Recurrence end date must be after start date")
        return self

    def pattern(self) -> Optional[Pattern]:
        return None

    def to_config(self) -> RecurrenceConfig:
        return RecurrenceConfig(
            start_date=self.start_date,
            pattern=self.pattern(),
            end_date=self.end_date,
            occurrences=self.occurrences,
        )


class NoRecurrenceIn(_RecurrenceIn):
    type: Literal["none"]


class DailyRecurrenceIn(_RecurrenceIn):
    type: Literal["daily"]
    daily_time_slots: Slots = Field(alias="dailyTimeSlots")

    def pattern(self) -> Pattern:
        return DailyPattern(time_slots=_slots(self.daily_time_slots))


class _DayWiseRecurrenceIn(_RecurrenceIn):
    day_wise_time_slots: list[DayWiseIn] = Field(alias="dayWiseTimeSlots", min_length=1)

    @field_validator("day_wise_time_slots")
    @classmethod
    def validate_distinct_days(cls, v):
        _distinct_days([d.day for d in v])
        return v

    def _days(self) -> tuple[DayWiseTimeSlot, ...]:
        return tuple(DayWiseTimeSlot(day=d.day, time_slots=_slots(d.time_slots)) for d in self.day_wise_time_slots)


class WeeklyRecurrenceIn(_DayWiseRecurrenceIn):
    type: Literal["weekly"]

    def pattern(self) -> Pattern:
        return WeeklyPattern(days=self._days())


class CustomRecurrenceIn(_DayWiseRecurrenceIn):
    type: Literal["custom"]
    custom_interval: int = Field(default=1, alias="customInterval", strict=True, ge=1, le=MAX_CUSTOM_INTERVAL)

    def pattern(self) -> Pattern:
        return CustomPattern(days=self._days(), interval=self.custom_interval)


class MonthlyRecurrenceIn(_RecurrenceIn):
    """
    Either ``monthlyDayWiseSlots`` or the legacy ``monthlyDays`` plus one
    ``monthlyTimeSlots`` list shared by all of them.
    """

    type: Literal["monthly"]
    monthly_day_wise_slots: Optional[list[MonthlyDayIn]] = Field(default=None, alias="monthlyDayWiseSlots")
    monthly_days: Optional[list[DayOfMonth]] = Field(default=None, alias="monthlyDays")
    monthly_time_slots: Optional[Slots] = Field(default=None, alias="monthlyTimeSlots")

    @model_validator(mode="after")
    def validate_monthly_payload(self):
        if self.monthly_day_wise_slots:
            _distinct_days([d.day for d in self.monthly_day_wise_slots])
        elif self.monthly_days:
            _distinct_days(self.monthly_days)
            if not self.monthly_time_slots:
                raise ValueError("Monthly recurrence requires monthlyTimeSlots that apply to all selected days")
        else:
            raise ValueError("Monthly recurrence requires either monthlyDayWiseSlots or monthlyDays")
        return self

    def pattern(self) -> Pattern:
        if self.monthly_day_wise_slots:
            return MonthlyPattern(
                days=tuple(
                    MonthlyDayWiseSlot(day=d.day, time_slots=_slots(d.time_slots)) for d in self.monthly_day_wise_slots
                )
            )
        # legacy form becomes the day-wise form right here
        return MonthlyPattern.from_day_list(self.monthly_days or [], _slots(self.monthly_time_slots or []))


class YearlyRecurrenceIn(_RecurrenceIn):
    type: Literal["yearly"]
    # zero-based on the wire (0 = January)
    yearly_month: int = Field(alias="yearlyMonth", strict=True, ge=0, le=11)
    yearly_day: DayOfMonth = Field(alias="yearlyDay")
    yearly_time_slots: Slots = Field(alias="yearlyTimeSlots")

    def pattern(self) -> Pattern:
        return YearlyPattern(month=self.yearly_month + 1, day=self.yearly_day, time_slots=_slots(self.yearly_time_slots))


RecurrenceIn = Annotated[
    Union[
        NoRecurrenceIn,
        DailyRecurrenceIn,
        WeeklyRecurrenceIn,
        MonthlyRecurrenceIn,
        YearlyRecurrenceIn,
        CustomRecurrenceIn,
    ],
    Field(discriminator="type"),
]

_RECURRENCE = TypeAdapter(RecurrenceIn)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _field_errors(err: PydanticValidationError, field: Optional[str] = None) -> list[dict[str, str]]:
    """
    One ``{field, message}`` per pydantic error. ``field`` defaults to the
    top-level key of the error location; the rest of the location is
    prefixed to the message.
    """
    out: list[dict[str, str]] = []
    for e in err.errors(include_url=False):
        loc = [str(p) for p in e["loc"]]
        message = e["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        if field is None:
            name, path = (loc[0], loc[1:]) if loc else ("body", [])
        else:
            name, path = field, loc
        out.append({"field": name, "message": f"{'.'.join(path)}: {message}" if path else message})
    return out


def _invalid(errors: list[dict[str, str]]) -> ValidationError:
    return ValidationError("Invalid input data", errors)


def _require_object(payload: Any) -> None:
    if not isinstance(payload, dict):
        raise _invalid([{"field": "body", "message": "Expected a JSON object"}])


def validate_recurrence(value: Any) -> RecurrenceConfig:
    """Validate a raw recurrence dict and build the RecurrenceConfig."""
    try:
        model = _RECURRENCE.validate_python(value)
    except PydanticValidationError as e:
        raise _invalid(_field_errors(e, field="recurrence")) from None
    return model.to_config()


# ---------------------------------------------------------------------------
# Class payloads
# ---------------------------------------------------------------------------


class ClassCreateIn(_Payload):
    title: str = Field(min_length=1, max_length=MAX_TITLE)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION)
    instructor: Optional[str] = Field(default=None, max_length=MAX_INSTRUCTOR)
    location: Optional[str] = Field(default=None, max_length=MAX_LOCATION)
    capacity: Optional[int] = Field(default=None, strict=True, ge=1, le=MAX_CAPACITY)
    availability: bool = True
    is_recurring: bool = Field(alias="isRecurring")
    scheduled_date: LooseDate = Field(default=None, alias="scheduledDate")
    start_time: Optional[HHMM] = Field(default=None, alias="startTime")
    end_time: Optional[HHMM] = Field(default=None, alias="endTime")
    recurrence: Optional[RecurrenceIn] = None

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v, info):
        start = info.data.get("start_time")
        if v and start and time_to_minutes(v) <= time_to_minutes(start):
            raise ValueError("End time must be after start time")
        return v

    def missing_fields(self) -> list[dict[str, str]]:
        """Fields required by the kind of class (one-time or recurring)."""
        if self.is_recurring:
            if self.recurrence is None:
                return [{"field": "recurrence", "message": "Recurrence configuration is required for recurring classes"}]
            return []
        required = (
            ("scheduledDate", self.scheduled_date, "Scheduled date"),
            ("startTime", self.start_time, "Start time"),
            ("endTime", self.end_time, "End time"),
        )
        return [
            {"field": key, "message": f"{label} is required for one-time classes"}
            for key, value, label in required
            if value is None
        ]

    def to_record(self) -> ClassRecord:
        recurring = self.is_recurring
        return ClassRecord(
            title=self.title,
            description=self.description,
            instructor=self.instructor,
            location=self.location,
            capacity=self.capacity,
            availability=self.availability,
            is_recurring=recurring,
            scheduled_date=None if recurring else self.scheduled_date,
            start_time=self.start_time,
            end_time=self.end_time,
            recurrence=self.recurrence.to_config() if recurring and self.recurrence is not None else None,
        )


class ClassUpdateIn(_Payload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION)
    instructor: Optional[str] = Field(default=None, max_length=MAX_INSTRUCTOR)
    location: Optional[str] = Field(default=None, max_length=MAX_LOCATION)
    capacity: Optional[int] = Field(default=None, strict=True, ge=1, le=MAX_CAPACITY)
    availability: Optional[bool] = None
    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")
    status: Optional[ClassStatus] = None
    scheduled_date: LooseDate = Field(default=None, alias="scheduledDate")
    start_time: Optional[HHMM] = Field(default=None, alias="startTime")
    end_time: Optional[HHMM] = Field(default=None, alias="endTime")
    recurrence: Optional[RecurrenceIn] = None

    @field_validator("title", mode="before")
    @classmethod
    def validate_title_present(cls, v):
        if v is None:
            raise ValueError("Title is required")
        return v

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v, info):
        start = info.data.get("start_time")
        if v and start and time_to_minutes(v) <= time_to_minutes(start):
            raise ValueError("End time must be after start time")
        return v

    def changes(self) -> dict[str, Any]:
        """Fields present in the payload, keyed by ClassRecord field name."""
        out: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name == "recurrence":
                if value is None:
                    continue
                value = value.to_config()
            elif name in ("availability", "is_recurring", "status") and value is None:
                continue
            out[name] = value
        return out


def validate_create_class(payload: Any) -> ClassRecord:
    """Validate a create-class payload and build the (unsaved) ClassRecord."""
    _require_object(payload)
    try:
        model = ClassCreateIn.model_validate(payload)
    except PydanticValidationError as e:
        raise _invalid(_field_errors(e)) from None

    missing = model.missing_fields()
    if missing:
        raise _invalid(missing)
    return model.to_record()


def validate_update_class(payload: Any) -> dict[str, Any]:
    """
    Validate a partial update. Returns changes keyed by ClassRecord field
    names, ready for ClassStore.update().
    """
    _require_object(payload)
    try:
        model = ClassUpdateIn.model_validate(payload)
    except PydanticValidationError as e:
        raise _invalid(_field_errors(e)) from None
    return model.changes()


def validate_class_status(value: Any) -> str:
    try:
        return _CLASS_STATUS.validate_python(value)
    except PydanticValidationError:
        raise _invalid(
            [{"field": "status", "message": "Status must be active, cancelled, or completed"}]
        ) from None


def validate_instance_status(value: Any) -> str:
    try:
        return _INSTANCE_STATUS.validate_python(value)
    except PydanticValidationError:
        raise _invalid(
            [{"field": "status", "message": "Status must be scheduled, cancelled, or completed"}]
        ) from None


class InstanceChangesIn(_Payload):
    status: Optional[InstanceStatus] = None
    scheduled_date: LooseDate = Field(default=None, alias="scheduledDate")
    start_time: Optional[HHMM] = Field(default=None, alias="startTime")
    end_time: Optional[HHMM] = Field(default=None, alias="endTime")

    @field_validator("end_time")
    @classmethod
    def validate_time_order(cls, v, info):
        start = info.data.get("start_time")
        if v and start and time_to_minutes(v) <= time_to_minutes(start):
            raise ValueError("End time must be after start time")
        return v


def validate_instance_changes(payload: Any) -> dict[str, Any]:
    """Validate an instance edit (status / scheduledDate / startTime / endTime)."""
    _require_object(payload)
    try:
        model = InstanceChangesIn.model_validate(payload)
    except PydanticValidationError as e:
        raise _invalid(_field_errors(e)) from None

    changes = {name: getattr(model, name) for name in model.model_fields_set if getattr(model, name) is not None}
    if not changes:
        raise _invalid([{"field": "body", "message": "Nothing to update"}])
    return changes
