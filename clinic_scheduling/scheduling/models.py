from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Literal
import enum


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"
    NO_SHOW = "no_show"


# Statuses that close an appointment without re-entering capacity/conflict checks
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.NO_SHOW,
})


class AppointmentType(str, enum.Enum):
    EVALUATION = "evaluation"
    SESSION = "session"
    RETURN = "return"
    TELECONSULTATION = "teleconsultation"


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    PENDING = "pending"


class RecurrenceRule(BaseModel):
    """Weekly recurrence: the weekdays to repeat on and an inclusive end date."""
    frequency: Literal["weekly"] = "weekly"
    days: List[int] = Field(default_factory=list)  # 0=Sunday .. 6=Saturday
    until: date


class Appointment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
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
    series_id: Optional[str] = None
    recurrence_rule: Optional[RecurrenceRule] = None

    # Display only
    session_number: Optional[int] = None
    total_sessions: Optional[int] = None

    @property
    def duration(self):
        return self.end_time - self.start_time


class InvalidAppointmentError(ValueError):
    """Raised for malformed appointments; indicates a caller bug, not a scheduling rejection."""


def ensure_well_formed(appointment: Appointment) -> None:
    """Reject appointments that can never be scheduled."""
    if not appointment.therapist_id or not appointment.therapist_id.strip():
        raise InvalidAppointmentError("Appointment has no therapist")

    if not appointment.patient_id or not appointment.patient_id.strip():
        raise InvalidAppointmentError("Appointment has no patient")

    if appointment.end_time <= appointment.start_time:
        raise InvalidAppointmentError(
            f"Appointment {appointment.id!r} ends at {appointment.end_time} "
            f"which is not after its start {appointment.start_time}"
        )
