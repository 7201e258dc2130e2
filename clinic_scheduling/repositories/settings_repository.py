from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import settings
from ..models.scheduling_settings import SchedulingSettings, TimeSlotLimitRow
from ..scheduling.capacity import CapacityLimits, DayType, TimeSlotLimit
from .appointment_repository import StorageError


def default_limits() -> CapacityLimits:
    """Capacity used until the clinic saves its own configuration."""
    return CapacityLimits(
        weekday=settings.WEEKDAY_SLOT_LIMITS,
        saturday=settings.SATURDAY_SLOT_LIMITS,
        sunday=settings.SUNDAY_SLOT_LIMITS,
        max_evaluations_per_slot=settings.MAX_EVALUATIONS_PER_SLOT,
        sunday_closed=settings.SUNDAY_CLOSED,
        slot_minutes=settings.SLOT_MINUTES,
    )


class SchedulingSettingsRepository:
    def __init__(self, db: Session):
        self.db = db

    async def get_capacity_limits(self) -> CapacityLimits:
        try:
            row = self.db.query(SchedulingSettings).first()
            if row is None:
                return default_limits()

            windows = self.db.query(TimeSlotLimitRow).order_by(
                TimeSlotLimitRow.day_type, TimeSlotLimitRow.position
            ).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load scheduling settings: {e}") from e

        by_day = {day_type: [] for day_type in DayType}
        for window in windows:
            by_day[window.day_type].append(TimeSlotLimit(
                start_time=window.start_time,
                end_time=window.end_time,
                limit=window.max_patients,
            ))

        return CapacityLimits(
            weekday=by_day[DayType.WEEKDAY],
            saturday=by_day[DayType.SATURDAY],
            sunday=by_day[DayType.SUNDAY],
            max_evaluations_per_slot=row.max_evaluations_per_slot,
            sunday_closed=row.sunday_closed,
            slot_minutes=row.slot_minutes,
        )

    async def save_limits(self, limits: CapacityLimits) -> CapacityLimits:
        """Replace the clinic's capacity configuration."""
        try:
            row = self.db.query(SchedulingSettings).first()
            if row is None:
                row = SchedulingSettings()
                self.db.add(row)

            row.max_evaluations_per_slot = limits.max_evaluations_per_slot
            row.sunday_closed = limits.sunday_closed
            row.slot_minutes = limits.slot_minutes

            self.db.query(TimeSlotLimitRow).delete(synchronize_session=False)
            for day_type in DayType:
                for position, window in enumerate(limits.windows_for(day_type)):
                    self.db.add(TimeSlotLimitRow(
                        day_type=day_type,
                        position=position,
                        start_time=window.start_time,
                        end_time=window.end_time,
                        max_patients=window.limit,
                    ))

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to save scheduling settings: {e}") from e

        return limits
