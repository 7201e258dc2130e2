from pydantic import BaseModel
from datetime import datetime
from typing import List, Literal, Union

from .models import Appointment


class Scheduled(BaseModel):
    outcome: Literal["scheduled"] = "scheduled"
    appointments: List[Appointment]

    @property
    def message(self) -> str:
        count = len(self.appointments)
        return f"{count} appointment(s) saved"


class RecurrenceEmpty(BaseModel):
    outcome: Literal["recurrence_empty"] = "recurrence_empty"

    @property
    def message(self) -> str:
        return "The recurrence rule did not generate any appointment"


class CapacityExceeded(BaseModel):
    outcome: Literal["capacity_exceeded"] = "capacity_exceeded"
    instant: datetime
    kind: Literal["patients", "evaluations"]
    count: int
    limit: int

    @property
    def message(self) -> str:
        if self.kind == "evaluations":
            return (
                f"The limit of {self.limit} evaluation(s) per slot was reached "
                f"at {self.instant:%Y-%m-%d %H:%M} ({self.count}/{self.limit})"
            )
        return (
            f"The {self.instant:%H:%M} slot on {self.instant:%Y-%m-%d} is full "
            f"({self.count}/{self.limit} patients)"
        )


class Conflict(BaseModel):
    outcome: Literal["conflict"] = "conflict"
    with_appointment: Appointment

    @property
    def message(self) -> str:
        return f"Conflict detected with the appointment of {self.with_appointment.patient_name}"


class StorageFailed(BaseModel):
    outcome: Literal["storage_failed"] = "storage_failed"
    cause: str

    @property
    def message(self) -> str:
        return "Failed to save the appointment(s), please try again"


class AppointmentNotFound(BaseModel):
    outcome: Literal["not_found"] = "not_found"
    appointment_id: str

    @property
    def message(self) -> str:
        return f"Appointment {self.appointment_id} not found"


class Deleted(BaseModel):
    outcome: Literal["deleted"] = "deleted"
    count: int

    @property
    def message(self) -> str:
        return f"{self.count} appointment(s) removed"


Rejection = Union[RecurrenceEmpty, CapacityExceeded, Conflict]

ScheduleOutcome = Union[
    Scheduled, RecurrenceEmpty, CapacityExceeded, Conflict,
    StorageFailed, AppointmentNotFound
]

DeleteOutcome = Union[Deleted, StorageFailed, AppointmentNotFound]
