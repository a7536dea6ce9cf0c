from pydantic import Field, field_validator
from datetime import datetime
from typing import List, Optional

from .availability import CamelModel
from ..models.appointment import AppointmentStatus, CancelledBy

MAX_SYMPTOMS_LENGTH = 2000
MAX_REASON_LENGTH = 500

class BookingSnapshot(CamelModel):
    """Identity details copied onto the appointment at booking time."""
    # Limits mirror the appointment columns
    patient_name: Optional[str] = Field(None, max_length=200)
    patient_email: Optional[str] = Field(None, max_length=255)
    patient_phone: Optional[str] = Field(None, max_length=20)
    doctor_name: Optional[str] = Field(None, max_length=200)
    specialization: Optional[str] = Field(None, max_length=100)

class AppointmentCreate(BookingSnapshot):
    doctor_id: int
    availability_id: int
    appointment_time: str = Field(max_length=20)
    symptoms: str
    appointment_id: Optional[str] = Field(None, max_length=50)

    @field_validator("appointment_time")
    @classmethod
    def strip_time(cls, value: str) -> str:
        return value.strip()

    @field_validator("symptoms")
    @classmethod
    def validate_symptoms(cls, value: str) -> str:
        value = value.strip()
        if len(value) > MAX_SYMPTOMS_LENGTH:
            raise ValueError(f"Symptoms must be {MAX_SYMPTOMS_LENGTH} characters or fewer.")
        return value

    def snapshot(self) -> BookingSnapshot:
        return BookingSnapshot(
            patient_name=self.patient_name,
            patient_email=self.patient_email,
            patient_phone=self.patient_phone,
            doctor_name=self.doctor_name,
            specialization=self.specialization,
        )

class StatusUpdate(CamelModel):
    # Kept as a plain string so unknown values surface as a 400, not a 422
    status: str
    notes: Optional[str] = None

class CancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)

class AppointmentResponse(CamelModel):
    id: int
    appointment_id: str
    patient_id: int
    patient_name: str
    patient_email: str
    patient_phone: str
    doctor_id: int
    doctor_name: str
    specialization: str
    availability_id: int
    appointment_date: datetime
    appointment_time: str
    status: AppointmentStatus
    symptoms: str
    notes: str
    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: str
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class AppointmentEnvelope(CamelModel):
    message: str
    appointment: AppointmentResponse

class AppointmentListResponse(CamelModel):
    message: str
    count: int
    appointments: List[AppointmentResponse]

class AppointmentPageResponse(CamelModel):
    message: str
    appointments: List[AppointmentResponse]
    total_pages: int
    current_page: int
    total_appointments: int

class AppointmentDetailsResponse(CamelModel):
    message: str
    current_appointment: Optional[AppointmentResponse] = None
    previous_appointments: List[AppointmentResponse]

class MessageResponse(CamelModel):
    message: str
