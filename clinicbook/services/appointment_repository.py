from sqlalchemy import or_
from sqlalchemy.orm import Session
from datetime import date, datetime, timedelta
from typing import Dict, List, NamedTuple, Optional
import math

from ..models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES, CLOSED_STATUSES
from ..core.config import settings
from ..core.exceptions import ConflictError

class Page(NamedTuple):
    items: List[Appointment]
    total: int
    page: int
    pages: int

class AppointmentRepository:
    """Persistence and queries for appointment records."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, pk: int) -> Optional[Appointment]:
        return self.db.query(Appointment).filter(Appointment.id == pk).first()

    def get_by_appointment_id(self, appointment_id: str) -> Optional[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.appointment_id == appointment_id
        ).first()

    def add(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def update_if_status(
        self,
        appointment: Appointment,
        expected: AppointmentStatus,
        values: Dict[str, object]
    ) -> Appointment:
        """Write ``values`` only while the stored status is still ``expected``.

        A concurrent change between loading the appointment and this write
        makes the UPDATE match no row; nothing is written and ConflictError
        is raised.
        """
        changed = self.db.query(Appointment).filter(
            Appointment.id == appointment.id,
            Appointment.status == expected
        ).update(values, synchronize_session=False)

        if changed != 1:
            self.db.rollback()
            raise ConflictError(
                "This appointment was changed by another request. Please reload and try again."
            )

        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def delete(self, appointment: Appointment) -> None:
        self.db.delete(appointment)
        self.db.commit()

    def active_for_slot(self, availability_id: int, slot: str) -> List[Appointment]:
        """Pending or confirmed appointments holding a slot."""
        return self.db.query(Appointment).filter(
            Appointment.availability_id == availability_id,
            Appointment.appointment_time == slot,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).all()

    def list_for_patient(
        self,
        patient_id: int,
        status: Optional[AppointmentStatus] = None,
        upcoming: Optional[bool] = None,
        now: Optional[datetime] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        query = self._filter(query, status=status, upcoming=upcoming, now=now)
        return query.order_by(
            Appointment.appointment_date.desc(),
            Appointment.appointment_time.desc()
        ).all()

    def next_for_patient(self, patient_id: int, now: Optional[datetime] = None) -> Optional[Appointment]:
        """The patient's earliest upcoming pending or confirmed appointment."""
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        query = self._filter(query, upcoming=True, now=now)
        return query.order_by(
            Appointment.appointment_date.asc(),
            Appointment.appointment_time.asc()
        ).first()

    def list_for_doctor(
        self,
        doctor_id: int,
        status: Optional[AppointmentStatus] = None,
        upcoming: Optional[bool] = None,
        on_date: Optional[date] = None,
        now: Optional[datetime] = None
    ) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        query = self._filter(query, status=status, upcoming=upcoming, on_date=on_date, now=now)
        return query.order_by(
            Appointment.appointment_date.asc(),
            Appointment.appointment_time.asc()
        ).all()

    def paginate(
        self,
        status: Optional[AppointmentStatus] = None,
        doctor_id: Optional[int] = None,
        patient_id: Optional[int] = None,
        on_date: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        page = max(page or 1, 1)
        limit = min(max(limit or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)

        query = self.db.query(Appointment)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        query = self._filter(query, status=status, on_date=on_date)

        total = query.count()
        items = query.order_by(
            Appointment.appointment_date.desc(),
            Appointment.appointment_time.desc()
        ).offset((page - 1) * limit).limit(limit).all()

        return Page(items=items, total=total, page=page, pages=math.ceil(total / limit))

    def _filter(self, query, status=None, upcoming=None, on_date=None, now=None):
        """Apply status/date/upcoming filters.

        ``upcoming=True`` replaces the status and date filters with
        "from now on and still pending or confirmed"; ``upcoming=False`` adds
        "in the past or already closed" on top of them.
        """
        now = now or datetime.utcnow()

        if upcoming is True:
            return query.filter(
                Appointment.appointment_date >= now,
                Appointment.status.in_(ACTIVE_STATUSES)
            )

        if status is not None:
            query = query.filter(Appointment.status == status)

        if on_date is not None:
            day_start = datetime.combine(on_date, datetime.min.time())
            query = query.filter(
                Appointment.appointment_date >= day_start,
                Appointment.appointment_date < day_start + timedelta(days=1)
            )

        if upcoming is False:
            query = query.filter(or_(
                Appointment.appointment_date < now,
                Appointment.status.in_(CLOSED_STATUSES)
            ))

        return query
