from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Optional, Union
import logging

from ..models.availability import Availability, TimeSlot
from ..models.doctor import Doctor
from ..core.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

class PublishResult(NamedTuple):
    created: List[Availability]
    updated: List[Availability]

@dataclass
class OpenAvailability:
    """Public projection of an availability: free slots only."""
    id: int
    doctor_id: int
    date: date
    time_slots: List[TimeSlot]

def to_day(value: DateLike) -> date:
    """Normalize a date, datetime or ISO string to day granularity."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip()).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value}") from exc

def normalize_labels(slot_labels: Optional[Iterable[str]]) -> List[str]:
    """Strip labels and drop blanks and duplicates, keeping first-seen order."""
    labels: List[str] = []
    for label in slot_labels or []:
        cleaned = str(label).strip()
        if cleaned and cleaned not in labels:
            labels.append(cleaned)
    return labels

class AvailabilityService:
    def __init__(self, db: Session):
        self.db = db

    def publish_slots(
        self,
        doctor_id: int,
        start_date: DateLike,
        end_date: DateLike,
        slot_labels: Iterable[str]
    ) -> PublishResult:
        """Create or extend availability for every date in [start, end]."""
        labels = normalize_labels(slot_labels)
        if start_date is None or end_date is None or not labels:
            raise ValidationError("Start date, end date, and time slots are required")

        start, end = to_day(start_date), to_day(end_date)
        if start > end:
            raise ValidationError("Start date must be before or equal to end date")

        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise NotFoundError("Doctor not found")

        created: List[Availability] = []
        updated: List[Availability] = []

        current = start
        while current <= end:
            existing = self.db.query(Availability).filter(
                Availability.doctor_id == doctor_id,
                Availability.date == current
            ).first()

            if existing:
                self._append_slots(existing, labels)
                updated.append(existing)
            else:
                availability = Availability(
                    doctor_id=doctor_id,
                    doctor_email=doctor.email,
                    date=current,
                    time_slots=[
                        TimeSlot(slot=label, is_booked=False, patient_id=None, position=index)
                        for index, label in enumerate(labels)
                    ]
                )
                self.db.add(availability)
                created.append(availability)

            current += timedelta(days=1)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(
                "Availability was modified concurrently. Please retry."
            ) from exc

        for availability in created + updated:
            self.db.refresh(availability)

        logger.info(
            f"Doctor {doctor_id} published {len(labels)} slot(s) for {start} to {end}: "
            f"{len(created)} created, {len(updated)} updated"
        )
        return PublishResult(created=created, updated=updated)

    def add_slots(self, availability_id: int, doctor_id: int, slot_labels: Iterable[str]) -> Availability:
        """Append slots to one availability owned by the doctor."""
        labels = normalize_labels(slot_labels)
        if not labels:
            raise ValidationError("Time slots are required")

        availability = self._get_owned(availability_id, doctor_id)
        self._append_slots(availability, labels)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError(
                "Availability was modified concurrently. Please retry."
            ) from exc

        self.db.refresh(availability)
        return availability

    def get(self, availability_id: int) -> Availability:
        availability = self.db.query(Availability).filter(
            Availability.id == availability_id
        ).first()
        if not availability:
            raise NotFoundError("Availability not found")
        return availability

    def find(
        self,
        doctor_id: int,
        start_date: Optional[DateLike] = None,
        end_date: Optional[DateLike] = None,
        only_free: bool = False
    ):
        """List a doctor's availability by date ascending.

        The range only applies when both bounds are given. With ``only_free``
        the result is the public view: records default to today onwards,
        carry only unbooked slots, and records without a free slot are left
        out.
        """
        query = self.db.query(Availability).filter(Availability.doctor_id == doctor_id)

        if start_date is not None and end_date is not None:
            query = query.filter(
                Availability.date >= to_day(start_date),
                Availability.date <= to_day(end_date)
            )
        elif only_free:
            query = query.filter(Availability.date >= date.today())

        availabilities = query.order_by(Availability.date.asc()).all()
        if not only_free:
            return availabilities

        open_availabilities = []
        for availability in availabilities:
            free_slots = [slot for slot in availability.time_slots if not slot.is_booked]
            if free_slots:
                open_availabilities.append(OpenAvailability(
                    id=availability.id,
                    doctor_id=availability.doctor_id,
                    date=availability.date,
                    time_slots=free_slots
                ))
        return open_availabilities

    def delete_if_unbooked(self, availability_id: int, doctor_id: int) -> None:
        """Delete an availability that has no booked slot."""
        self._get_owned(availability_id, doctor_id)

        # Remove free slots first; a booked row survives and blocks the delete
        self.db.query(TimeSlot).filter(
            TimeSlot.availability_id == availability_id,
            TimeSlot.is_booked == False  # noqa: E712
        ).delete(synchronize_session="fetch")

        remaining = self.db.query(TimeSlot).filter(
            TimeSlot.availability_id == availability_id
        ).count()
        if remaining:
            self.db.rollback()
            raise ConflictError("Cannot delete availability with booked appointments")

        self.db.query(Availability).filter(
            Availability.id == availability_id
        ).delete(synchronize_session="fetch")
        self.db.commit()

        logger.info(f"Doctor {doctor_id} deleted availability {availability_id}")

    def _get_owned(self, availability_id: int, doctor_id: int) -> Availability:
        availability = self.db.query(Availability).filter(
            Availability.id == availability_id,
            Availability.doctor_id == doctor_id
        ).first()
        if not availability:
            raise NotFoundError("Availability not found")
        return availability

    def _append_slots(self, availability: Availability, labels: List[str]) -> int:
        existing = set(availability.slot_labels())
        next_position = max((slot.position for slot in availability.time_slots), default=-1) + 1

        added = 0
        for label in labels:
            if label in existing:
                continue
            availability.time_slots.append(
                TimeSlot(slot=label, is_booked=False, patient_id=None, position=next_position)
            )
            next_position += 1
            added += 1
        return added
