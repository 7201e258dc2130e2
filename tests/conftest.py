import pytest
from datetime import datetime
import itertools

from clinic_scheduling.scheduling.capacity import CapacityLimits, TimeSlotLimit
from clinic_scheduling.scheduling.models import Appointment
from clinic_scheduling.repositories.appointment_repository import StorageError

_ids = itertools.count(1)


def build_appointment(start: datetime, end: datetime, **overrides) -> Appointment:
    data = {
        "id": f"app_{next(_ids)}",
        "patient_id": "patient-1",
        "patient_name": "Maria Silva",
        "therapist_id": "therapist-1",
        "start_time": start,
        "end_time": end,
    }
    data.update(overrides)
    return Appointment(**data)


class InMemoryAppointmentStore:
    """Appointment store double keeping records in a dict."""

    def __init__(self, appointments=()):
        self.appointments = {app.id: app for app in appointments}
        self.fail_writes = False
        self.fail_reads = False
        self.commits = 0

    async def list_appointments(self):
        if self.fail_reads:
            raise StorageError("database unavailable")
        return sorted(self.appointments.values(), key=lambda app: app.start_time)

    async def upsert_many(self, appointments, replacing_series=None, replacing_ids=()):
        if self.fail_writes:
            raise StorageError("disk full")
        if replacing_series:
            series_id, from_time = replacing_series
            self._drop_series(series_id, from_time)
        for appointment_id in replacing_ids:
            self.appointments.pop(appointment_id, None)
        for app in appointments:
            self.appointments[app.id] = app
        self.commits += 1
        return list(appointments)

    async def delete(self, appointment_id):
        if self.fail_writes:
            raise StorageError("disk full")
        return 1 if self.appointments.pop(appointment_id, None) else 0

    async def delete_series_from(self, series_id, from_time):
        if self.fail_writes:
            raise StorageError("disk full")
        return self._drop_series(series_id, from_time)

    def _drop_series(self, series_id, from_time):
        doomed = [
            app.id for app in self.appointments.values()
            if app.series_id == series_id and app.start_time >= from_time
        ]
        for appointment_id in doomed:
            del self.appointments[appointment_id]
        return len(doomed)


class RecordingCache:
    def __init__(self):
        self.invalidations = []

    async def invalidate(self, patient_ids, therapist_ids):
        self.invalidations.append((set(patient_ids), set(therapist_ids)))


class StaticSettings:
    def __init__(self, limits: CapacityLimits):
        self.limits = limits

    async def get_capacity_limits(self):
        return self.limits


@pytest.fixture
def make_appointment():
    return build_appointment


@pytest.fixture
def limits():
    """Weekday 09:00-12:00 holds two patients, Saturday morning one."""
    return CapacityLimits(
        weekday=[
            TimeSlotLimit(start_time="09:00", end_time="12:00", limit=2),
            TimeSlotLimit(start_time="14:00", end_time="18:00", limit=3),
        ],
        saturday=[TimeSlotLimit(start_time="08:00", end_time="12:00", limit=1)],
        max_evaluations_per_slot=1,
    )
