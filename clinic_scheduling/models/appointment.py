from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, JSON, Enum as SQLEnum
from sqlalchemy.sql import func

from ..core.database import Base
from ..scheduling.models import AppointmentStatus, AppointmentType, PaymentStatus

class Appointment(Base):
    __tablename__ = "appointments"

    # Occurrence ids are derived from the series id, so they are strings
    id = Column(String(120), primary_key=True, index=True)

    # References to records owned by other services
    patient_id = Column(String(64), nullable=False, index=True)
    patient_name = Column(String(200), nullable=False, default="")
    therapist_id = Column(String(64), nullable=False, index=True)

    # Appointment details
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    title = Column(String(200), nullable=False, default="")
    type = Column(SQLEnum(AppointmentType), nullable=False, default=AppointmentType.SESSION)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    notes = Column(Text, nullable=True)

    # Billing
    value = Column(Numeric(10, 2), nullable=False, default=0)
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Recurrence
    series_id = Column(String(64), nullable=True, index=True)
    recurrence_rule = Column(JSON, nullable=True)
    session_number = Column(Integer, nullable=True)
    total_sessions = Column(Integer, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, therapist_id={self.therapist_id}, start='{self.start_time}')>"
