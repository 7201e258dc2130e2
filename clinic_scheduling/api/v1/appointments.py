from fastapi import APIRouter, Depends, HTTPException, status
from datetime import datetime, timedelta
from typing import List, Optional
import logging

from ...api.deps import (
    get_appointment_repository, get_schedule_cache, get_scheduling_service
)
from ...core.config import settings
from ...repositories.appointment_repository import AppointmentRepository, StorageError
from ...schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, DeleteResponse, MoveRequest,
    PaymentUpdate, ResizeRequest, StatusUpdate
)
from ...scheduling.models import Appointment, InvalidAppointmentError
from ...scheduling.outcomes import (
    AppointmentNotFound, CapacityExceeded, Conflict, Deleted, RecurrenceEmpty,
    Scheduled, StorageFailed
)
from ...services.cache import ALL_KEY, RedisScheduleCache, patient_key, therapist_key
from ...services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Appointments"])

OUTCOME_STATUS_CODES = {
    RecurrenceEmpty: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CapacityExceeded: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    StorageFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    AppointmentNotFound: status.HTTP_404_NOT_FOUND,
}

def raise_for_outcome(outcome) -> None:
    """Turn every non-success outcome into an HTTP error carrying its details."""
    if isinstance(outcome, (Scheduled, Deleted)):
        return

    detail = outcome.model_dump(mode="json")
    detail["message"] = outcome.message
    if isinstance(outcome, StorageFailed):
        # The cause is logged, not shown
        detail.pop("cause")

    raise HTTPException(status_code=OUTCOME_STATUS_CODES[type(outcome)], detail=detail)

def check_recurrence_horizon(appointment: Appointment) -> None:
    """Refuse rules that would generate appointments too far ahead."""
    rule = appointment.recurrence_rule
    if rule is None:
        return

    horizon = appointment.start_time.date() + timedelta(days=settings.MAX_RECURRENCE_DAYS)
    if rule.until > horizon:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Recurrence cannot extend more than {settings.MAX_RECURRENCE_DAYS} days ahead"
        )

def invalid_appointment(exc: InvalidAppointmentError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

@router.get("/appointments", response_model=List[Appointment])
async def list_appointments(
    patient_id: Optional[str] = None,
    therapist_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    repository: AppointmentRepository = Depends(get_appointment_repository),
    cache: RedisScheduleCache = Depends(get_schedule_cache)
):
    """List appointments, optionally filtered by patient, therapist and time range."""
    cache_key = None
    if start is None and end is None:
        if patient_id and not therapist_id:
            cache_key = patient_key(patient_id)
        elif therapist_id and not patient_id:
            cache_key = therapist_key(therapist_id)
        elif not patient_id and not therapist_id:
            cache_key = ALL_KEY

    if cache_key:
        cached = await cache.get_list(cache_key)
        if cached is not None:
            return cached

    try:
        appointments = await repository.list_appointments(
            patient_id=patient_id, therapist_id=therapist_id, start=start, end=end
        )
    except StorageError as e:
        logger.error(f"Failed to list appointments: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load appointments"
        )

    if cache_key:
        await cache.set_list(cache_key, appointments)
    return appointments

@router.get("/appointments/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    repository: AppointmentRepository = Depends(get_appointment_repository)
):
    """Get a single appointment."""
    try:
        appointment = await repository.get(appointment_id)
    except StorageError as e:
        logger.error(f"Failed to load appointment {appointment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load appointment"
        )

    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found"
        )
    return appointment

@router.post("/appointments", response_model=List[Appointment], status_code=status.HTTP_201_CREATED)
async def create_appointment(
    appointment_data: AppointmentCreate,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Schedule an appointment, or a whole series when a recurrence rule is given."""
    appointment = appointment_data.to_appointment()
    check_recurrence_horizon(appointment)

    try:
        outcome = await service.schedule(appointment)
    except InvalidAppointmentError as e:
        raise invalid_appointment(e)

    raise_for_outcome(outcome)
    return outcome.appointments

@router.put("/appointments/{appointment_id}", response_model=List[Appointment])
async def update_appointment(
    appointment_id: str,
    appointment_data: AppointmentUpdate,
    apply_to_series: bool = False,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """
    Update an appointment. With ``apply_to_series`` the change is applied to
    this and all future occurrences of its series.
    """
    appointment = appointment_data.to_appointment(appointment_id)
    check_recurrence_horizon(appointment)

    try:
        outcome = await service.edit(appointment, apply_to_series=apply_to_series)
    except InvalidAppointmentError as e:
        raise invalid_appointment(e)

    raise_for_outcome(outcome)
    return outcome.appointments

@router.patch("/appointments/{appointment_id}/move", response_model=Appointment)
async def move_appointment(
    appointment_id: str,
    move_data: MoveRequest,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Move an appointment to a new start time, and optionally another therapist."""
    try:
        outcome = await service.move(appointment_id, move_data.start_time, move_data.therapist_id)
    except InvalidAppointmentError as e:
        raise invalid_appointment(e)

    raise_for_outcome(outcome)
    return outcome.appointments[0]

@router.patch("/appointments/{appointment_id}/resize", response_model=Appointment)
async def resize_appointment(
    appointment_id: str,
    resize_data: ResizeRequest,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Change the end time of an appointment."""
    outcome = await service.resize(appointment_id, resize_data.end_time)
    raise_for_outcome(outcome)
    return outcome.appointments[0]

@router.patch("/appointments/{appointment_id}/status", response_model=Appointment)
async def update_appointment_status(
    appointment_id: str,
    status_data: StatusUpdate,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Update appointment status."""
    outcome = await service.update_status(appointment_id, status_data.status)
    raise_for_outcome(outcome)
    return outcome.appointments[0]

@router.patch("/appointments/{appointment_id}/payment", response_model=Appointment)
async def update_appointment_payment(
    appointment_id: str,
    payment_data: PaymentUpdate,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Mark an appointment as paid or pending."""
    outcome = await service.update_payment(appointment_id, payment_data.payment_status)
    raise_for_outcome(outcome)
    return outcome.appointments[0]

@router.delete("/appointments/{appointment_id}", response_model=DeleteResponse)
async def delete_appointment(
    appointment_id: str,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Delete a single appointment."""
    outcome = await service.delete(appointment_id)
    raise_for_outcome(outcome)
    return DeleteResponse(deleted=outcome.count, message=outcome.message)

@router.delete("/series/{series_id}", response_model=DeleteResponse)
async def delete_series(
    series_id: str,
    from_time: datetime,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Delete this and all future occurrences of a series."""
    outcome = await service.delete_series_from(series_id, from_time)
    raise_for_outcome(outcome)
    return DeleteResponse(deleted=outcome.count, message=outcome.message)
