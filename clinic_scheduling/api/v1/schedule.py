from fastapi import APIRouter, Depends, HTTPException, Query, status
from datetime import date, datetime
from typing import Optional
import logging

from ...api.deps import get_scheduling_service
from ...repositories.appointment_repository import StorageError
from ...schemas.appointment import DayOccupancyResponse, SlotOccupancyResponse
from ...services.scheduling_service import SchedulingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedule", tags=["Schedule"])

def storage_unavailable(e: StorageError) -> HTTPException:
    logger.error(f"Failed to load schedule: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Failed to load schedule"
    )

@router.get("/occupancy", response_model=SlotOccupancyResponse)
async def slot_occupancy(
    at: datetime,
    ignore_id: Optional[str] = None,
    service: SchedulingService = Depends(get_scheduling_service)
):
    """How many patients and evaluations already occupy the slot containing ``at``."""
    try:
        occupancy = await service.slot_occupancy(at, ignore_id=ignore_id)
    except StorageError as e:
        raise storage_unavailable(e)

    return SlotOccupancyResponse.build(at, occupancy)

@router.get("/occupancy/day", response_model=DayOccupancyResponse)
async def day_occupancy(
    day: date,
    first_hour: int = Query(7, ge=0, le=23),
    last_hour: int = Query(20, ge=1, le=24),
    service: SchedulingService = Depends(get_scheduling_service)
):
    """Occupancy of every slot of a day, for shading full slots on the calendar."""
    if last_hour <= first_hour:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="last_hour must be after first_hour"
        )

    try:
        slots = await service.day_occupancy(day, first_hour, last_hour)
    except StorageError as e:
        raise storage_unavailable(e)

    return DayOccupancyResponse(
        slots=[SlotOccupancyResponse.build(start, occupancy) for start, occupancy in slots]
    )
