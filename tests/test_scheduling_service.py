import pytest
import redis
from datetime import date, datetime, time, timedelta

from clinic_scheduling.scheduling.models import (
    AppointmentStatus, AppointmentType, InvalidAppointmentError, PaymentStatus, RecurrenceRule
)
from clinic_scheduling.scheduling.outcomes import (
    AppointmentNotFound, CapacityExceeded, Conflict, Deleted, RecurrenceEmpty,
    Scheduled, StorageFailed
)
from clinic_scheduling.services.cache import RedisScheduleCache
from clinic_scheduling.services.scheduling_service import SchedulingService

from .conftest import InMemoryAppointmentStore, RecordingCache, StaticSettings

MONDAY = date(2024, 1, 1)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


@pytest.fixture
def store():
    return InMemoryAppointmentStore()


@pytest.fixture
def cache():
    return RecordingCache()


@pytest.fixture
def service(store, cache, limits):
    return SchedulingService(store, cache, StaticSettings(limits))


def weekly(make_appointment, weeks: int = 3, **overrides):
    """Monday 15:00-16:00 repeating every Monday for ``weeks`` more weeks."""
    return make_appointment(
        at(MONDAY, 15), at(MONDAY, 16),
        recurrence_rule=RecurrenceRule(days=[1], until=MONDAY + timedelta(weeks=weeks)),
        **overrides
    )


class TestSchedule:

    @pytest.mark.asyncio
    async def test_single_appointment_is_committed(self, service, store, cache, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))

        outcome = await service.schedule(appointment)

        assert isinstance(outcome, Scheduled)
        assert outcome.appointments == [appointment]
        assert appointment.id in store.appointments
        assert cache.invalidations == [({"patient-1"}, {"therapist-1"})]

    @pytest.mark.asyncio
    async def test_series_is_committed(self, service, store, make_appointment):
        outcome = await service.schedule(weekly(make_appointment))

        assert isinstance(outcome, Scheduled)
        assert len(outcome.appointments) == 4
        assert len(store.appointments) == 4

    @pytest.mark.asyncio
    async def test_empty_recurrence_is_rejected(self, service, store, make_appointment):
        template = make_appointment(
            at(MONDAY, 9), at(MONDAY, 10),
            recurrence_rule=RecurrenceRule(days=[1], until=MONDAY - timedelta(days=1)),
        )

        outcome = await service.schedule(template)

        assert isinstance(outcome, RecurrenceEmpty)
        assert store.commits == 0

    @pytest.mark.asyncio
    async def test_malformed_appointment_raises(self, service, store, make_appointment):
        with pytest.raises(InvalidAppointmentError):
            await service.schedule(make_appointment(at(MONDAY, 10), at(MONDAY, 9)))
        assert store.commits == 0

    @pytest.mark.asyncio
    async def test_full_slot_rejects_whole_series(self, store, cache, limits, make_appointment):
        """A full third Monday aborts the series and nothing is saved."""
        third_monday = MONDAY + timedelta(weeks=2)
        store.appointments = {
            app.id: app for app in (
                make_appointment(at(third_monday, 15), at(third_monday, 16), therapist_id=f"t{i}")
                for i in range(3)
            )
        }
        service = SchedulingService(store, cache, StaticSettings(limits))

        outcome = await service.schedule(weekly(make_appointment, therapist_id="t9"))

        assert isinstance(outcome, CapacityExceeded)
        assert outcome.kind == "patients"
        assert outcome.instant == at(third_monday, 15)
        assert (outcome.count, outcome.limit) == (3, 3)
        assert len(store.appointments) == 3
        assert cache.invalidations == []

    @pytest.mark.asyncio
    async def test_evaluation_limit(self, service, store, make_appointment):
        await service.schedule(make_appointment(
            at(MONDAY, 15), at(MONDAY, 16), type=AppointmentType.EVALUATION
        ))

        second_eval = make_appointment(
            at(MONDAY, 15), at(MONDAY, 16),
            therapist_id="therapist-2", type=AppointmentType.EVALUATION,
        )
        outcome = await service.schedule(second_eval)

        assert isinstance(outcome, CapacityExceeded)
        assert outcome.kind == "evaluations"
        assert (outcome.count, outcome.limit) == (1, 1)

        session = make_appointment(at(MONDAY, 15), at(MONDAY, 16), therapist_id="therapist-2")
        assert isinstance(await service.schedule(session), Scheduled)

    @pytest.mark.asyncio
    async def test_therapist_conflict(self, service, store, make_appointment):
        existing = make_appointment(at(MONDAY, 10), at(MONDAY, 11), patient_name="Ana Souza")
        await service.schedule(existing)

        outcome = await service.schedule(make_appointment(
            at(MONDAY, 10, 30), at(MONDAY, 11, 30), patient_id="patient-2"
        ))

        assert isinstance(outcome, Conflict)
        assert outcome.with_appointment.id == existing.id
        assert "Ana Souza" in outcome.message
        assert len(store.appointments) == 1

    @pytest.mark.asyncio
    async def test_reused_id_does_not_replace_stored_appointment(self, service, store, make_appointment):
        """A new appointment carrying a stored id is rejected even at another time and therapist."""
        ana = make_appointment(at(MONDAY, 9), at(MONDAY, 10), patient_name="Ana Souza")
        await service.schedule(ana)

        bruno = make_appointment(
            at(MONDAY, 15), at(MONDAY, 16),
            id=ana.id, patient_id="patient-2", patient_name="Bruno Lima", therapist_id="therapist-2",
        )
        outcome = await service.schedule(bruno)

        assert isinstance(outcome, Conflict)
        assert outcome.with_appointment == ana
        assert store.appointments[ana.id] == ana
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_capacity_checked_before_conflict(self, service, make_appointment):
        """When both checks fail the capacity rejection is reported."""
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10), therapist_id="therapist-2"))

        outcome = await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))

        assert isinstance(outcome, CapacityExceeded)

    @pytest.mark.asyncio
    async def test_storage_failure_is_distinct(self, service, store, cache, make_appointment):
        store.fail_writes = True

        outcome = await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))

        assert isinstance(outcome, StorageFailed)
        assert outcome.cause == "disk full"
        assert cache.invalidations == []

    @pytest.mark.asyncio
    async def test_cache_failure_after_commit_keeps_outcome(self, store, limits, make_appointment):
        """A Redis outage during invalidation is logged and the appointment stays saved."""

        class BrokenRedis:
            def delete(self, *keys):
                raise redis.ConnectionError("connection refused")

        service = SchedulingService(store, RedisScheduleCache(BrokenRedis()), StaticSettings(limits))
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))

        outcome = await service.schedule(appointment)

        assert isinstance(outcome, Scheduled)
        assert store.appointments[appointment.id] == appointment

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_storage_failure(self, service, store, make_appointment):
        store.fail_reads = True

        outcome = await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))

        assert isinstance(outcome, StorageFailed)


class TestEdit:

    @pytest.mark.asyncio
    async def test_edit_does_not_conflict_with_itself(self, service, store, make_appointment):
        original = make_appointment(at(MONDAY, 10), at(MONDAY, 11))
        await service.schedule(original)

        edited = original.model_copy(update={"end_time": at(MONDAY, 11, 30), "notes": "longer"})
        outcome = await service.edit(edited)

        assert isinstance(outcome, Scheduled)
        assert store.appointments[original.id].notes == "longer"

    @pytest.mark.asyncio
    async def test_edit_unknown_appointment(self, service, make_appointment):
        outcome = await service.edit(make_appointment(at(MONDAY, 10), at(MONDAY, 11)))
        assert isinstance(outcome, AppointmentNotFound)

    @pytest.mark.asyncio
    async def test_single_occurrence_edit_keeps_rest_of_series(self, service, store, make_appointment):
        outcome = await service.schedule(weekly(make_appointment))
        second = outcome.appointments[1]

        moved = second.model_copy(update={
            "start_time": second.start_time + timedelta(hours=1),
            "end_time": second.end_time + timedelta(hours=1),
        })
        result = await service.edit(moved)

        assert isinstance(result, Scheduled)
        assert len(store.appointments) == 4
        assert store.appointments[second.id].start_time == at(MONDAY + timedelta(weeks=1), 16)
        assert store.appointments[second.id].series_id == second.series_id

    @pytest.mark.asyncio
    async def test_single_occurrence_edit_cannot_change_rule(self, service, store, make_appointment):
        outcome = await service.schedule(weekly(make_appointment))
        second = outcome.appointments[1]

        edited = second.model_copy(update={
            "recurrence_rule": RecurrenceRule(days=[1, 3], until=MONDAY + timedelta(weeks=3)),
        })
        with pytest.raises(InvalidAppointmentError):
            await service.edit(edited)

        assert store.appointments[second.id] == second
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_apply_to_series_cannot_overwrite_earlier_occurrence(self, service, store, make_appointment):
        """Moving the third occurrence onto the second's start must not replace the second."""
        outcome = await service.schedule(weekly(make_appointment))
        before = dict(store.appointments)
        second, third = outcome.appointments[1], outcome.appointments[2]

        edited = third.model_copy(update={
            "start_time": second.start_time,
            "end_time": second.end_time,
            "therapist_id": "therapist-2",
        })
        result = await service.edit(edited, apply_to_series=True)

        assert isinstance(result, Conflict)
        assert result.with_appointment == second
        assert store.appointments == before

    @pytest.mark.asyncio
    async def test_apply_to_series_replaces_future_occurrences(self, service, store, make_appointment):
        outcome = await service.schedule(weekly(make_appointment))
        first, second = outcome.appointments[0], outcome.appointments[1]

        edited = second.model_copy(update={
            "start_time": second.start_time + timedelta(hours=1),
            "end_time": second.end_time + timedelta(hours=1),
        })
        result = await service.edit(edited, apply_to_series=True)

        assert isinstance(result, Scheduled)
        assert len(result.appointments) == 3
        assert all(app.start_time.hour == 16 for app in result.appointments)
        assert all(app.series_id == first.series_id for app in result.appointments)

        # The first occurrence is untouched, the old future ones are gone
        assert store.appointments[first.id] == first
        assert second.id not in store.appointments
        assert len(store.appointments) == 4

    @pytest.mark.asyncio
    async def test_apply_to_series_rejection_keeps_series(self, service, store, make_appointment):
        outcome = await service.schedule(weekly(make_appointment))
        before = dict(store.appointments)
        second = outcome.appointments[1]

        blocker = make_appointment(
            at(MONDAY + timedelta(weeks=3), 9), at(MONDAY + timedelta(weeks=3), 10),
            patient_id="patient-2", patient_name="João",
        )
        await service.schedule(blocker)

        edited = second.model_copy(update={
            "start_time": at(second.start_time.date(), 9),
            "end_time": at(second.start_time.date(), 10),
        })
        result = await service.edit(edited, apply_to_series=True)

        assert isinstance(result, Conflict)
        assert result.with_appointment.id == blocker.id
        for appointment_id, appointment in before.items():
            assert store.appointments[appointment_id] == appointment

    @pytest.mark.asyncio
    async def test_single_appointment_turned_into_series(self, service, store, make_appointment):
        original = make_appointment(at(MONDAY, 15), at(MONDAY, 16))
        await service.schedule(original)

        edited = original.model_copy(update={
            "recurrence_rule": RecurrenceRule(days=[1], until=MONDAY + timedelta(weeks=1)),
        })
        result = await service.edit(edited)

        assert isinstance(result, Scheduled)
        assert len(result.appointments) == 2
        assert original.id not in store.appointments
        assert len(store.appointments) == 2


class TestReschedule:

    @pytest.mark.asyncio
    async def test_move_keeps_duration(self, service, store, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 9, 45))
        await service.schedule(appointment)

        outcome = await service.move(appointment.id, at(MONDAY, 15), therapist_id="therapist-2")

        assert isinstance(outcome, Scheduled)
        moved = store.appointments[appointment.id]
        assert (moved.start_time, moved.end_time) == (at(MONDAY, 15), at(MONDAY, 15, 45))
        assert moved.therapist_id == "therapist-2"

    @pytest.mark.asyncio
    async def test_move_into_conflict_is_rejected(self, service, store, make_appointment):
        blocker = make_appointment(at(MONDAY, 15), at(MONDAY, 16), patient_id="patient-2")
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(blocker)
        await service.schedule(appointment)

        outcome = await service.move(appointment.id, at(MONDAY, 15, 30))

        assert isinstance(outcome, Conflict)
        assert store.appointments[appointment.id] == appointment

    @pytest.mark.asyncio
    async def test_move_unknown(self, service):
        outcome = await service.move("missing", at(MONDAY, 9))
        assert isinstance(outcome, AppointmentNotFound)

    @pytest.mark.asyncio
    async def test_resize_snaps_to_step(self, service, store, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(appointment)

        outcome = await service.resize(appointment.id, at(MONDAY, 10, 20))

        assert isinstance(outcome, Scheduled)
        assert store.appointments[appointment.id].end_time == at(MONDAY, 10, 15)

    @pytest.mark.asyncio
    async def test_resize_has_minimum_duration(self, service, store, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(appointment)

        await service.resize(appointment.id, at(MONDAY, 9, 2))

        assert store.appointments[appointment.id].end_time == at(MONDAY, 9, 15)


class TestStatusAndPayment:

    @pytest.mark.asyncio
    async def test_terminal_status_skips_checks(self, store, cache, limits, make_appointment):
        """Completing an appointment in an overfull slot is still allowed."""
        crowded = [
            make_appointment(at(MONDAY, 9), at(MONDAY, 10), therapist_id=f"t{i}")
            for i in range(3)
        ]
        store.appointments = {app.id: app for app in crowded}
        service = SchedulingService(store, cache, StaticSettings(limits))

        outcome = await service.update_status(crowded[0].id, AppointmentStatus.COMPLETED)

        assert isinstance(outcome, Scheduled)
        assert store.appointments[crowded[0].id].status == AppointmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_reactivating_canceled_rechecks_capacity(self, service, store, make_appointment):
        canceled = make_appointment(at(MONDAY, 9), at(MONDAY, 10), status=AppointmentStatus.CANCELED)
        await service.schedule(canceled)
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10), therapist_id="t2"))
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10), therapist_id="t3"))

        outcome = await service.update_status(canceled.id, AppointmentStatus.SCHEDULED)

        assert isinstance(outcome, CapacityExceeded)
        assert store.appointments[canceled.id].status == AppointmentStatus.CANCELED

    @pytest.mark.asyncio
    async def test_update_payment(self, service, store, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(appointment)

        outcome = await service.update_payment(appointment.id, PaymentStatus.PAID)

        assert isinstance(outcome, Scheduled)
        assert store.appointments[appointment.id].payment_status == PaymentStatus.PAID


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_single(self, service, store, cache, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(appointment)

        outcome = await service.delete(appointment.id)

        assert outcome == Deleted(count=1)
        assert store.appointments == {}
        assert cache.invalidations[-1] == ({"patient-1"}, {"therapist-1"})

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        assert isinstance(await service.delete("missing"), AppointmentNotFound)

    @pytest.mark.asyncio
    async def test_delete_this_and_future(self, service, store, make_appointment):
        """Deleting from the second occurrence leaves only the first."""
        outcome = await service.schedule(weekly(make_appointment))
        first, second = outcome.appointments[0], outcome.appointments[1]

        result = await service.delete_series_from(second.series_id, second.start_time)

        assert result == Deleted(count=3)
        assert list(store.appointments) == [first.id]

    @pytest.mark.asyncio
    async def test_delete_storage_failure(self, service, store, make_appointment):
        appointment = make_appointment(at(MONDAY, 9), at(MONDAY, 10))
        await service.schedule(appointment)
        store.fail_writes = True

        assert isinstance(await service.delete(appointment.id), StorageFailed)


class TestOccupancyViews:

    @pytest.mark.asyncio
    async def test_day_occupancy_marks_full_slots(self, service, make_appointment):
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10), therapist_id="t2"))

        slots = await service.day_occupancy(MONDAY, first_hour=8, last_hour=11)

        assert [start.hour for start, _ in slots] == [8, 9, 10]
        assert [occupancy.is_full for _, occupancy in slots] == [False, True, False]

    @pytest.mark.asyncio
    async def test_slot_occupancy(self, service, make_appointment):
        await service.schedule(make_appointment(at(MONDAY, 9), at(MONDAY, 10)))

        occupancy = await service.slot_occupancy(at(MONDAY, 9, 30))

        assert occupancy.patient_count == 1
        assert occupancy.patient_limit == 2
