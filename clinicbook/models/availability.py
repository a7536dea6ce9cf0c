from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Boolean, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base
# Referenced tables must be registered before mappers configure
from .doctor import Doctor  # noqa: F401
from .patient import Patient  # noqa: F401

class Availability(Base):
    """A doctor's published slots for one calendar date."""
    __tablename__ = "availability"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", name="uq_availability_doctor_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    doctor_email = Column(String(255), nullable=False)
    date = Column(Date, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="availabilities")
    time_slots = relationship(
        "TimeSlot",
        back_populates="availability",
        order_by="TimeSlot.position",
        cascade="all, delete-orphan",
    )

    @property
    def has_booked_slots(self) -> bool:
        return any(slot.is_booked for slot in self.time_slots)

    def slot_labels(self):
        return [slot.slot for slot in self.time_slots]

    def __repr__(self):
        return f"<Availability(id={self.id}, doctor_id={self.doctor_id}, date='{self.date}')>"

class TimeSlot(Base):
    """One bookable slot. Occupancy is written only by SlotReservationService."""
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("availability_id", "slot", name="uq_time_slot_label"),
    )

    id = Column(Integer, primary_key=True, index=True)
    availability_id = Column(Integer, ForeignKey("availability.id"), nullable=False, index=True)
    slot = Column(String(20), nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)
    position = Column(Integer, nullable=False, default=0)

    availability = relationship("Availability", back_populates="time_slots")

    def __repr__(self):
        return f"<TimeSlot(availability_id={self.availability_id}, slot='{self.slot}', is_booked={self.is_booked})>"
