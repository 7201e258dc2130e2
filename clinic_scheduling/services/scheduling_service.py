from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple
import logging

from ..repositories.appointment_repository import StorageError
from ..scheduling.capacity import CapacityLimits, SlotOccupancy, get_slot_occupancy
from ..scheduling.conflicts import find_conflict
from ..scheduling.models import (
    Appointment, AppointmentStatus, AppointmentType, PaymentStatus,
    TERMINAL_STATUSES, InvalidAppointmentError, ensure_well_formed
)
from ..scheduling.outcomes import (
    AppointmentNotFound, CapacityExceeded, Conflict, Deleted, DeleteOutcome,
    RecurrenceEmpty, Rejection, Scheduled, ScheduleOutcome, StorageFailed
)
from ..scheduling.recurrence import expand_recurrences

logger = logging.getLogger(__name__)


class AppointmentStore(Protocol):
    async def list_appointments(self) -> List[Appointment]: ...

    async def upsert_many(
        self,
        appointments: Sequence[Appointment],
        replacing_series: Optional[Tuple[str, datetime]] = None,
        replacing_ids: Sequence[str] = ()
    ) -> List[Appointment]: ...

    async def delete(self, appointment_id: str) -> int: ...

    async def delete_series_from(self, series_id: str, from_time: datetime) -> int: ...


class ScheduleCache(Protocol):
    async def invalidate(self, patient_ids: Iterable[str], therapist_ids: Iterable[str]) -> None: ...


class CapacitySettingsProvider(Protocol):
    async def get_capacity_limits(self) -> CapacityLimits: ...


def check_capacity(
    occurrences: Sequence[Appointment],
    existing: Sequence[Appointment],
    limits: CapacityLimits,
    ignore_id: Optional[str] = None
) -> Optional[CapacityExceeded]:
    """First occurrence, left to right, that would overfill its slot."""
    for occurrence in occurrences:
        occupancy = get_slot_occupancy(occurrence.start_time, existing, limits, ignore_id)

        if occupancy.is_patient_limit_full:
            return CapacityExceeded(
                instant=occurrence.start_time,
                kind="patients",
                count=occupancy.patient_count,
                limit=occupancy.patient_limit,
            )

        if occurrence.type == AppointmentType.EVALUATION and occupancy.is_eval_limit_full:
            return CapacityExceeded(
                instant=occurrence.start_time,
                kind="evaluations",
                count=occupancy.eval_count,
                limit=occupancy.eval_limit,
            )

    return None


class SchedulingService:
    """
    Decides whether appointments may be placed on the calendar and commits them.

    Every request works against one snapshot of the schedule fetched at its
    start. There is no locking: two schedulers committing between each
    other's fetch and commit can both succeed (last write wins).
    """

    def __init__(
        self,
        repository: AppointmentStore,
        cache: ScheduleCache,
        settings_provider: CapacitySettingsProvider,
        resize_step_minutes: int = 15
    ):
        self.repository = repository
        self.cache = cache
        self.settings_provider = settings_provider
        self.resize_step_minutes = resize_step_minutes

    # Placement

    async def schedule(self, appointment: Appointment) -> ScheduleOutcome:
        """Place a new appointment, expanding its recurrence rule if it has one."""
        ensure_well_formed(appointment)

        try:
            existing, limits = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        occurrences = expand_recurrences(appointment)
        if not occurrences:
            return self._rejected(RecurrenceEmpty(), appointment)

        # A new appointment never takes over the id of a stored one
        taken = _id_clash(occurrences, existing)
        if taken:
            return self._rejected(Conflict(with_appointment=taken), appointment)

        rejection = self._validate(occurrences, existing, limits)
        if rejection:
            return self._rejected(rejection, appointment)

        return await self._commit(occurrences)

    async def edit(self, appointment: Appointment, apply_to_series: bool = False) -> ScheduleOutcome:
        """
        Re-validate and save changes to an existing appointment.

        With ``apply_to_series`` the edited appointment becomes the head of a
        fresh series: its own and every later occurrence of the series are
        replaced by a re-expansion of the rule. Earlier occurrences are kept.
        """
        ensure_well_formed(appointment)

        try:
            existing, limits = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        current = _find(existing, appointment.id)
        if current is None:
            return AppointmentNotFound(appointment_id=appointment.id)

        if apply_to_series and current.series_id:
            return await self._edit_series(appointment, current, existing, limits)

        if current.series_id is None and appointment.recurrence_rule and appointment.recurrence_rule.days:
            # A single appointment turned into a series: the new occurrences replace it
            template = appointment.model_copy(update={"series_id": None})
            occurrences = expand_recurrences(template)
            if not occurrences:
                return self._rejected(RecurrenceEmpty(), appointment)

            rejection = self._validate(occurrences, existing, limits, ignore_id=current.id)
            if rejection:
                return self._rejected(rejection, appointment)

            return await self._commit(occurrences, previous=[current], replacing_ids=[current.id])

        if appointment.recurrence_rule is not None and appointment.recurrence_rule != current.recurrence_rule:
            raise InvalidAppointmentError(
                f"Appointment {current.id} belongs to series {current.series_id}; "
                "change its recurrence rule with apply_to_series"
            )

        candidate = appointment.model_copy(update={
            "series_id": current.series_id,
            "recurrence_rule": current.recurrence_rule,
        })
        return await self._place_single(candidate, current, existing, limits)

    async def move(
        self,
        appointment_id: str,
        new_start: datetime,
        therapist_id: Optional[str] = None
    ) -> ScheduleOutcome:
        """Drag-and-drop: keep the duration, change the start and optionally the therapist."""
        try:
            existing, limits = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        current = _find(existing, appointment_id)
        if current is None:
            return AppointmentNotFound(appointment_id=appointment_id)

        candidate = current.model_copy(update={
            "start_time": new_start,
            "end_time": new_start + current.duration,
            "therapist_id": therapist_id or current.therapist_id,
        })
        ensure_well_formed(candidate)
        return await self._place_single(candidate, current, existing, limits)

    async def resize(self, appointment_id: str, new_end: datetime) -> ScheduleOutcome:
        """Change the end time, snapping the duration to the resize step."""
        try:
            existing, limits = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        current = _find(existing, appointment_id)
        if current is None:
            return AppointmentNotFound(appointment_id=appointment_id)

        candidate = current.model_copy(update={
            "end_time": current.start_time + self.snap_duration(new_end - current.start_time),
        })
        return await self._place_single(candidate, current, existing, limits)

    def snap_duration(self, duration: timedelta) -> timedelta:
        step = self.resize_step_minutes
        steps = max(1, round(duration.total_seconds() / 60 / step))
        return timedelta(minutes=steps * step)

    # Field updates

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> ScheduleOutcome:
        """
        Completed, Canceled and NoShow are saved as is. Going back to
        Scheduled takes the slot again, so it is re-validated.
        """
        try:
            existing, limits = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        current = _find(existing, appointment_id)
        if current is None:
            return AppointmentNotFound(appointment_id=appointment_id)

        candidate = current.model_copy(update={"status": status})
        if status in TERMINAL_STATUSES:
            return await self._commit([candidate])

        return await self._place_single(candidate, current, existing, limits)

    async def update_payment(self, appointment_id: str, payment_status: PaymentStatus) -> ScheduleOutcome:
        try:
            existing, _ = await self._snapshot()
        except StorageError as e:
            return StorageFailed(cause=str(e))

        current = _find(existing, appointment_id)
        if current is None:
            return AppointmentNotFound(appointment_id=appointment_id)

        return await self._commit([current.model_copy(update={"payment_status": payment_status})])

    # Removal

    async def delete(self, appointment_id: str) -> DeleteOutcome:
        try:
            existing = await self.repository.list_appointments()
            current = _find(existing, appointment_id)
            if current is None:
                return AppointmentNotFound(appointment_id=appointment_id)
            count = await self.repository.delete(appointment_id)
        except StorageError as e:
            logger.error(f"Failed to delete appointment {appointment_id}: {str(e)}")
            return StorageFailed(cause=str(e))

        await self.cache.invalidate([current.patient_id], [current.therapist_id])
        return Deleted(count=count)

    async def delete_series_from(self, series_id: str, from_time: datetime) -> DeleteOutcome:
        """Delete "this and all future" occurrences of a series."""
        try:
            existing = await self.repository.list_appointments()
            removed = [
                app for app in existing
                if app.series_id == series_id and app.start_time >= from_time
            ]
            count = await self.repository.delete_series_from(series_id, from_time)
        except StorageError as e:
            logger.error(f"Failed to delete series {series_id} from {from_time}: {str(e)}")
            return StorageFailed(cause=str(e))

        await self.cache.invalidate(
            {app.patient_id for app in removed},
            {app.therapist_id for app in removed},
        )
        return Deleted(count=count)

    # Calendar views

    async def slot_occupancy(self, instant: datetime, ignore_id: Optional[str] = None) -> SlotOccupancy:
        existing, limits = await self._snapshot()
        return get_slot_occupancy(instant, existing, limits, ignore_id)

    async def day_occupancy(
        self,
        day: date,
        first_hour: int = 7,
        last_hour: int = 20
    ) -> List[Tuple[datetime, SlotOccupancy]]:
        """Occupancy of every slot of a day between ``first_hour`` and ``last_hour``."""
        existing, limits = await self._snapshot()

        slot = timedelta(minutes=limits.slot_minutes)
        current = datetime.combine(day, datetime.min.time()) + timedelta(hours=first_hour)
        stop = datetime.combine(day, datetime.min.time()) + timedelta(hours=last_hour)

        slots = []
        while current < stop:
            slots.append((current, get_slot_occupancy(current, existing, limits)))
            current += slot
        return slots

    # Internals

    async def _snapshot(self) -> Tuple[List[Appointment], CapacityLimits]:
        existing = await self.repository.list_appointments()
        limits = await self.settings_provider.get_capacity_limits()
        return existing, limits

    async def _edit_series(
        self,
        appointment: Appointment,
        current: Appointment,
        existing: List[Appointment],
        limits: CapacityLimits
    ) -> ScheduleOutcome:
        series_id = current.series_id
        cut_from = current.start_time

        rule = appointment.recurrence_rule or _series_rule(existing, series_id)
        template = appointment.model_copy(update={"series_id": series_id, "recurrence_rule": rule})

        # Occurrences being replaced neither conflict with nor occupy capacity for the new ones
        remaining, replaced = [], []
        for app in existing:
            if app.series_id == series_id and app.start_time >= cut_from:
                replaced.append(app)
            else:
                remaining.append(app)

        occurrences = expand_recurrences(template)
        if not occurrences:
            return self._rejected(RecurrenceEmpty(), appointment)

        # Kept occurrences keep their records even when a new start lands on one of them
        taken = _id_clash(occurrences, remaining)
        if taken:
            return self._rejected(Conflict(with_appointment=taken), appointment)

        rejection = self._validate(occurrences, remaining, limits, ignore_id=appointment.id)
        if rejection:
            return self._rejected(rejection, appointment)

        return await self._commit(
            occurrences,
            previous=replaced,
            replacing_series=(series_id, cut_from),
        )

    async def _place_single(
        self,
        candidate: Appointment,
        current: Appointment,
        existing: List[Appointment],
        limits: CapacityLimits
    ) -> ScheduleOutcome:
        rejection = self._validate([candidate], existing, limits, ignore_id=candidate.id)
        if rejection:
            return self._rejected(rejection, candidate)

        return await self._commit([candidate], previous=[current])

    def _validate(
        self,
        occurrences: Sequence[Appointment],
        existing: Sequence[Appointment],
        limits: CapacityLimits,
        ignore_id: Optional[str] = None
    ) -> Optional[Rejection]:
        capacity = check_capacity(occurrences, existing, limits, ignore_id)
        if capacity:
            return capacity

        conflicting = find_conflict(occurrences, existing, ignore_id)
        if conflicting:
            return Conflict(with_appointment=conflicting)

        return None

    async def _commit(
        self,
        occurrences: List[Appointment],
        previous: Sequence[Appointment] = (),
        replacing_series: Optional[Tuple[str, datetime]] = None,
        replacing_ids: Sequence[str] = ()
    ) -> ScheduleOutcome:
        try:
            saved = await self.repository.upsert_many(
                occurrences,
                replacing_series=replacing_series,
                replacing_ids=replacing_ids,
            )
        except StorageError as e:
            logger.error(f"Failed to save {len(occurrences)} appointment(s): {str(e)}")
            return StorageFailed(cause=str(e))

        touched = list(occurrences) + list(previous)
        await self.cache.invalidate(
            {app.patient_id for app in touched},
            {app.therapist_id for app in touched},
        )

        logger.info(f"Saved {len(saved)} appointment(s) starting {occurrences[0].start_time}")
        return Scheduled(appointments=saved)

    def _rejected(self, rejection: Rejection, appointment: Appointment) -> Rejection:
        logger.info(f"Rejected appointment {appointment.id}: {rejection.message}")
        return rejection


def _find(appointments: Iterable[Appointment], appointment_id: str) -> Optional[Appointment]:
    return next((app for app in appointments if app.id == appointment_id), None)


def _id_clash(
    occurrences: Iterable[Appointment],
    existing: Iterable[Appointment]
) -> Optional[Appointment]:
    """Stored appointment whose id one of the occurrences would overwrite."""
    by_id = {app.id: app for app in existing}
    return next((by_id[app.id] for app in occurrences if app.id in by_id), None)


def _series_rule(appointments: Iterable[Appointment], series_id: str):
    """Rule stored on the series head, if the series still has one."""
    for app in appointments:
        if app.series_id == series_id and app.recurrence_rule is not None:
            return app.recurrence_rule
    return None
