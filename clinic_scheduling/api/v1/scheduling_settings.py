from fastapi import APIRouter, Depends, HTTPException, status
import logging

from ...api.deps import get_settings_repository
from ...repositories.appointment_repository import StorageError
from ...repositories.settings_repository import SchedulingSettingsRepository
from ...scheduling.capacity import CapacityLimits, DayType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling-settings", tags=["Scheduling settings"])

@router.get("", response_model=CapacityLimits)
async def get_scheduling_settings(
    repository: SchedulingSettingsRepository = Depends(get_settings_repository)
):
    """Current capacity windows and evaluation limit."""
    try:
        return await repository.get_capacity_limits()
    except StorageError as e:
        logger.error(str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load scheduling settings"
        )

@router.put("", response_model=CapacityLimits)
async def update_scheduling_settings(
    limits: CapacityLimits,
    repository: SchedulingSettingsRepository = Depends(get_settings_repository)
):
    """Replace the capacity configuration."""
    for day_type in DayType:
        for window in limits.windows_for(day_type):
            if window.end_time <= window.start_time:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"Window {window.start_time}-{window.end_time} on {day_type.value} ends before it starts"
                )

    try:
        return await repository.save_limits(limits)
    except StorageError as e:
        logger.error(str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to save scheduling settings"
        )
