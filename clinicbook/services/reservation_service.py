from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from pydantic import BaseModel
from datetime import datetime
from typing import Optional
import logging

from ..models.availability import Availability, TimeSlot
from ..core.exceptions import NotFoundError, SlotNotFoundError, SlotAlreadyBookedError

logger = logging.getLogger(__name__)

class ReservationToken(BaseModel):
    """Proof that a slot was claimed; needed to compensate a failed booking."""
    availability_id: int
    slot: str
    patient_id: int
    reserved_at: datetime

class SlotReservationService:
    """The only writer of slot occupancy.

    Every change to ``TimeSlot.is_booked`` is a single conditional UPDATE on
    one slot row, so concurrent callers racing for the same slot resolve in
    the database: exactly one UPDATE matches, the others match zero rows.
    Slots of the same availability are separate rows and never contend.
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, availability_id: int, slot: str, patient_id: int) -> ReservationToken:
        """Atomically mark a free slot as booked by ``patient_id``."""
        try:
            claimed = self.db.query(TimeSlot).filter(
                TimeSlot.availability_id == availability_id,
                TimeSlot.slot == slot,
                TimeSlot.is_booked == False  # noqa: E712
            ).update(
                {"is_booked": True, "patient_id": patient_id},
                synchronize_session=False
            )

            if claimed == 1:
                self.db.commit()
                logger.info(
                    f"Reserved slot {slot} of availability {availability_id} "
                    f"for patient {patient_id}"
                )
                return ReservationToken(
                    availability_id=availability_id,
                    slot=slot,
                    patient_id=patient_id,
                    reserved_at=datetime.utcnow()
                )

            self._raise_if_missing(availability_id, slot)
            self.db.rollback()
        except (SQLAlchemyError, NotFoundError):
            self.db.rollback()
            raise

        logger.info(f"Slot {slot} of availability {availability_id} is already booked")
        raise SlotAlreadyBookedError()

    def release(
        self,
        availability_id: int,
        slot: str,
        patient_id: Optional[int] = None
    ) -> bool:
        """Free a booked slot; a slot that is already free is left alone.

        When ``patient_id`` is given the slot is only freed if that patient
        holds it. Returns whether a slot was freed.
        """
        try:
            query = self.db.query(TimeSlot).filter(
                TimeSlot.availability_id == availability_id,
                TimeSlot.slot == slot,
                TimeSlot.is_booked == True  # noqa: E712
            )
            if patient_id is not None:
                query = query.filter(TimeSlot.patient_id == patient_id)

            freed = query.update(
                {"is_booked": False, "patient_id": None},
                synchronize_session=False
            )

            if freed:
                self.db.commit()
                logger.info(f"Released slot {slot} of availability {availability_id}")
                return True

            self._raise_if_missing(availability_id, slot)
            self.db.rollback()
        except (SQLAlchemyError, NotFoundError):
            self.db.rollback()
            raise

        return False

    def release_token(self, token: ReservationToken) -> bool:
        """Undo a reservation made by ``reserve``."""
        return self.release(token.availability_id, token.slot, patient_id=token.patient_id)

    def _raise_if_missing(self, availability_id: int, slot: str) -> None:
        availability = self.db.query(Availability.id).filter(
            Availability.id == availability_id
        ).first()
        if not availability:
            raise NotFoundError("Availability slot not found")

        time_slot = self.db.query(TimeSlot.id).filter(
            TimeSlot.availability_id == availability_id,
            TimeSlot.slot == slot
        ).first()
        if not time_slot:
            raise SlotNotFoundError("Time slot not found")
