from sqlalchemy import Column, Integer, DateTime, Boolean, Time, Enum as SQLEnum
from sqlalchemy.sql import func

from ..core.database import Base
from ..scheduling.capacity import DayType

class SchedulingSettings(Base):
    __tablename__ = "scheduling_settings"

    # Single clinic-wide row
    id = Column(Integer, primary_key=True, index=True)
    max_evaluations_per_slot = Column(Integer, nullable=False, default=1)
    sunday_closed = Column(Boolean, nullable=False, default=True)
    slot_minutes = Column(Integer, nullable=False, default=60)

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SchedulingSettings(id={self.id}, max_evaluations_per_slot={self.max_evaluations_per_slot})>"

class TimeSlotLimitRow(Base):
    __tablename__ = "time_slot_limits"

    id = Column(Integer, primary_key=True, index=True)
    day_type = Column(SQLEnum(DayType), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    max_patients = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<TimeSlotLimitRow(day_type='{self.day_type}', {self.start_time}-{self.end_time}, max_patients={self.max_patients})>"
