from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from ..scheduling.capacity import SlotOccupancy
from ..scheduling.models import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus, RecurrenceRule
)


class AppointmentBase(BaseModel):
    patient_id: str
    patient_name: str = ""
    therapist_id: str
    start_time: datetime
    end_time: datetime
    title: str = ""
    type: AppointmentType = AppointmentType.SESSION
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    value: Decimal = Decimal("0")
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    session_number: Optional[int] = None
    total_sessions: Optional[int] = None


class AppointmentCreate(AppointmentBase):
    id: Optional[str] = None

    def to_appointment(self) -> Appointment:
        data = self.model_dump(exclude={"id"})
        return Appointment(id=self.id or f"app_{uuid.uuid4().hex}", **data)


class AppointmentUpdate(AppointmentBase):
    series_id: Optional[str] = None

    def to_appointment(self, appointment_id: str) -> Appointment:
        return Appointment(id=appointment_id, **self.model_dump())


class MoveRequest(BaseModel):
    start_time: datetime
    therapist_id: Optional[str] = None


class ResizeRequest(BaseModel):
    end_time: datetime


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class PaymentUpdate(BaseModel):
    payment_status: PaymentStatus


class DeleteResponse(BaseModel):
    deleted: int
    message: str


class SlotOccupancyResponse(BaseModel):
    start: datetime
    is_full: bool
    patient_count: int
    patient_limit: Optional[int] = None
    is_patient_limit_full: bool
    eval_count: int
    eval_limit: int
    is_eval_limit_full: bool

    @classmethod
    def build(cls, start: datetime, occupancy: SlotOccupancy) -> "SlotOccupancyResponse":
        return cls(start=start, is_full=occupancy.is_full, **occupancy.model_dump())


class DayOccupancyResponse(BaseModel):
    slots: List[SlotOccupancyResponse]
