from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..repositories.appointment_repository import AppointmentRepository
from ..repositories.settings_repository import SchedulingSettingsRepository
from ..services.cache import RedisScheduleCache
from ..services.scheduling_service import SchedulingService

def get_appointment_repository(db: Session = Depends(get_db)) -> AppointmentRepository:
    return AppointmentRepository(db)

def get_settings_repository(db: Session = Depends(get_db)) -> SchedulingSettingsRepository:
    return SchedulingSettingsRepository(db)

def get_schedule_cache(redis_client = Depends(get_redis)) -> RedisScheduleCache:
    return RedisScheduleCache(redis_client, ttl_seconds=settings.CACHE_TTL_SECONDS)

def get_scheduling_service(
    repository: AppointmentRepository = Depends(get_appointment_repository),
    settings_repository: SchedulingSettingsRepository = Depends(get_settings_repository),
    cache: RedisScheduleCache = Depends(get_schedule_cache)
) -> SchedulingService:
    """Build the scheduling orchestrator for one request."""
    return SchedulingService(
        repository=repository,
        cache=cache,
        settings_provider=settings_repository,
        resize_step_minutes=settings.RESIZE_STEP_MINUTES,
    )
