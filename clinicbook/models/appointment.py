from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"

class CancelledBy(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"

ACTIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)
CLOSED_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(String(50), unique=True, nullable=False, index=True)

    # References; availability_id is not a foreign key so the record
    # outlives a deleted availability
    patient_id = Column(Integer, nullable=False, index=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    availability_id = Column(Integer, nullable=False)

    # Snapshot taken at booking time
    patient_name = Column(String(200), nullable=False)
    patient_email = Column(String(255), nullable=False)
    patient_phone = Column(String(20), nullable=False, default="")
    doctor_name = Column(String(200), nullable=False)
    specialization = Column(String(100), nullable=False)

    # Appointment details
    appointment_date = Column(DateTime, nullable=False, index=True)
    appointment_time = Column(String(20), nullable=False)
    status = Column(
        SQLEnum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        nullable=False,
        default=AppointmentStatus.PENDING,
        index=True,
    )
    symptoms = Column(Text, nullable=False)
    notes = Column(Text, nullable=False, default="")

    # Cancellation
    cancelled_by = Column(
        SQLEnum(CancelledBy, name="cancelled_by", values_callable=_enum_values),
        nullable=True,
    )
    cancellation_reason = Column(String(500), nullable=False, default="")
    cancelled_at = Column(DateTime, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def scheduled_at(self) -> datetime:
        """Appointment date combined with the slot label when it is a clock time."""
        try:
            slot_time = datetime.strptime(self.appointment_time.strip(), "%H:%M").time()
        except (AttributeError, ValueError):
            return self.appointment_date
        return datetime.combine(self.appointment_date.date(), slot_time)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def __repr__(self):
        return f"<Appointment(id={self.id}, appointment_id='{self.appointment_id}', status='{self.status}')>"
