from pydantic import BaseModel, Field
from datetime import date, datetime, time
from typing import Iterable, List, Optional
import enum

from .models import Appointment, AppointmentStatus, AppointmentType


class DayType(str, enum.Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


def day_type_for(day: date) -> DayType:
    weekday = day.weekday()
    if weekday == 5:
        return DayType.SATURDAY
    if weekday == 6:
        return DayType.SUNDAY
    return DayType.WEEKDAY


class TimeSlotLimit(BaseModel):
    """Maximum concurrent patients for a time-of-day window [start_time, end_time)."""
    start_time: time
    end_time: time
    limit: int = Field(ge=0)

    def contains(self, moment: time) -> bool:
        return self.start_time <= moment < self.end_time


class CapacityLimits(BaseModel):
    weekday: List[TimeSlotLimit] = Field(default_factory=list)
    saturday: List[TimeSlotLimit] = Field(default_factory=list)
    sunday: List[TimeSlotLimit] = Field(default_factory=list)
    max_evaluations_per_slot: int = Field(default=1, ge=0)
    sunday_closed: bool = True
    slot_minutes: int = Field(default=60, gt=0)

    def windows_for(self, day_type: DayType) -> List[TimeSlotLimit]:
        if day_type is DayType.SATURDAY:
            return self.saturday
        if day_type is DayType.SUNDAY:
            return self.sunday
        return self.weekday


class SlotOccupancy(BaseModel):
    patient_count: int
    patient_limit: Optional[int] = None  # None means the slot is unbounded
    is_patient_limit_full: bool
    eval_count: int
    eval_limit: int
    is_eval_limit_full: bool

    @property
    def is_full(self) -> bool:
        return self.is_patient_limit_full


def find_window(limits: CapacityLimits, instant: datetime) -> Optional[TimeSlotLimit]:
    """First configured window containing the instant's time-of-day, if any."""
    moment = instant.time()
    for window in limits.windows_for(day_type_for(instant.date())):
        if window.contains(moment):
            return window
    return None


def slot_key(instant: datetime, slot_minutes: int):
    minutes = instant.hour * 60 + instant.minute
    return instant.date(), minutes // slot_minutes


def patient_limit_for(limits: CapacityLimits, instant: datetime) -> Optional[int]:
    if limits.sunday_closed and day_type_for(instant.date()) is DayType.SUNDAY:
        return 0

    window = find_window(limits, instant)
    return window.limit if window is not None else None


def get_slot_occupancy(
    instant: datetime,
    existing: Iterable[Appointment],
    limits: CapacityLimits,
    ignore_id: Optional[str] = None
) -> SlotOccupancy:
    """
    Count what already occupies the slot containing ``instant``.

    A slot is one ``slot_minutes`` bucket of a calendar day. Canceled
    appointments free their slot; every other status still holds it.
    """
    target = slot_key(instant, limits.slot_minutes)

    patient_count = 0
    eval_count = 0
    for app in existing:
        if app.id == ignore_id or app.status == AppointmentStatus.CANCELED:
            continue
        if slot_key(app.start_time, limits.slot_minutes) != target:
            continue
        patient_count += 1
        if app.type == AppointmentType.EVALUATION:
            eval_count += 1

    patient_limit = patient_limit_for(limits, instant)
    eval_limit = limits.max_evaluations_per_slot

    return SlotOccupancy(
        patient_count=patient_count,
        patient_limit=patient_limit,
        is_patient_limit_full=patient_limit is not None and patient_count >= patient_limit,
        eval_count=eval_count,
        eval_limit=eval_limit,
        is_eval_limit_full=eval_count >= eval_limit,
    )
