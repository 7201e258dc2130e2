from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import logging

from ..models.appointment import Appointment as AppointmentRecord
from ..scheduling.models import Appointment, RecurrenceRule

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The persistence layer could not read or commit appointments."""


def to_domain(record: AppointmentRecord) -> Appointment:
    rule = RecurrenceRule(**record.recurrence_rule) if record.recurrence_rule else None
    return Appointment(
        id=record.id,
        patient_id=record.patient_id,
        patient_name=record.patient_name or "",
        therapist_id=record.therapist_id,
        start_time=record.start_time,
        end_time=record.end_time,
        title=record.title or "",
        type=record.type,
        status=record.status,
        value=record.value,
        payment_status=record.payment_status,
        notes=record.notes,
        series_id=record.series_id,
        recurrence_rule=rule,
        session_number=record.session_number,
        total_sessions=record.total_sessions,
    )


def apply_to_record(record: AppointmentRecord, appointment: Appointment) -> AppointmentRecord:
    record.patient_id = appointment.patient_id
    record.patient_name = appointment.patient_name
    record.therapist_id = appointment.therapist_id
    record.start_time = appointment.start_time
    record.end_time = appointment.end_time
    record.title = appointment.title
    record.type = appointment.type
    record.status = appointment.status
    record.value = appointment.value
    record.payment_status = appointment.payment_status
    record.notes = appointment.notes
    record.series_id = appointment.series_id
    record.recurrence_rule = (
        appointment.recurrence_rule.model_dump(mode="json")
        if appointment.recurrence_rule else None
    )
    record.session_number = appointment.session_number
    record.total_sessions = appointment.total_sessions
    return record


class AppointmentRepository:
    """SQLAlchemy-backed appointment store."""

    def __init__(self, db: Session):
        self.db = db

    async def list_appointments(
        self,
        patient_id: Optional[str] = None,
        therapist_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Appointment]:
        try:
            query = self.db.query(AppointmentRecord)
            if patient_id:
                query = query.filter(AppointmentRecord.patient_id == patient_id)
            if therapist_id:
                query = query.filter(AppointmentRecord.therapist_id == therapist_id)
            if start:
                query = query.filter(AppointmentRecord.end_time > start)
            if end:
                query = query.filter(AppointmentRecord.start_time < end)
            records = query.order_by(AppointmentRecord.start_time).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load appointments: {e}") from e

        return [to_domain(record) for record in records]

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        try:
            record = self.db.query(AppointmentRecord).filter(
                AppointmentRecord.id == appointment_id
            ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load appointment {appointment_id}: {e}") from e

        return to_domain(record) if record else None

    async def upsert_many(
        self,
        appointments: Sequence[Appointment],
        replacing_series: Optional[Tuple[str, datetime]] = None,
        replacing_ids: Sequence[str] = ()
    ) -> List[Appointment]:
        """
        Insert or update appointments by id in a single transaction.

        ``replacing_series`` is a ``(series_id, from_time)`` pair whose
        occurrences are deleted in the same transaction before the upsert;
        ``replacing_ids`` are single appointments removed the same way.
        """
        try:
            if replacing_series:
                series_id, from_time = replacing_series
                self._delete_series_query(series_id, from_time).delete(synchronize_session=False)
            if replacing_ids:
                self.db.query(AppointmentRecord).filter(
                    AppointmentRecord.id.in_(list(replacing_ids))
                ).delete(synchronize_session=False)
            if replacing_series or replacing_ids:
                # Deleted rows must not be found again by the id lookups below
                self.db.expire_all()

            for appointment in appointments:
                record = self.db.get(AppointmentRecord, appointment.id)
                if record is None:
                    record = AppointmentRecord(id=appointment.id)
                    self.db.add(record)
                apply_to_record(record, appointment)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save {len(appointments)} appointment(s): {str(e)}")
            raise StorageError(str(e)) from e

        return list(appointments)

    async def delete(self, appointment_id: str) -> int:
        try:
            count = self.db.query(AppointmentRecord).filter(
                AppointmentRecord.id == appointment_id
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e
        return count

    async def delete_series_from(self, series_id: str, from_time: datetime) -> int:
        """Delete every occurrence of a series starting at or after ``from_time``."""
        try:
            count = self._delete_series_query(series_id, from_time).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e
        return count

    def _delete_series_query(self, series_id: str, from_time: datetime):
        return self.db.query(AppointmentRecord).filter(
            AppointmentRecord.series_id == series_id,
            AppointmentRecord.start_time >= from_time
        )
