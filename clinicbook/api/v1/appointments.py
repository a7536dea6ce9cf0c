from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from ...core.database import get_db
from ...core.security import Principal
from ...api.deps import (
    get_current_principal, get_admin, get_doctor, get_patient, get_staff, booking_rate_limit
)
from ...services.booking_service import BookingService
from ...schemas.appointment import (
    AppointmentCreate, StatusUpdate, CancelRequest, AppointmentResponse, AppointmentEnvelope,
    AppointmentListResponse, AppointmentPageResponse, AppointmentDetailsResponse, MessageResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

# Patient routes
@router.post(
    "",
    response_model=AppointmentEnvelope,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limit)]
)
def create_appointment(
    data: AppointmentCreate,
    principal: Principal = Depends(get_patient),
    db: Session = Depends(get_db)
):
    """Book a slot for the calling patient."""
    service = BookingService(db)
    appointment = service.create_appointment(
        patient_id=principal.id,
        doctor_id=data.doctor_id,
        availability_id=data.availability_id,
        slot=data.appointment_time,
        symptoms=data.symptoms,
        snapshot=data.snapshot(),
        appointment_id=data.appointment_id
    )

    return AppointmentEnvelope(
        message="Appointment booked successfully",
        appointment=AppointmentResponse.model_validate(appointment)
    )

@router.get("/patient", response_model=AppointmentListResponse)
def list_patient_appointments(
    status: Optional[str] = None,
    upcoming: Optional[bool] = None,
    principal: Principal = Depends(get_patient),
    db: Session = Depends(get_db)
):
    """List the calling patient's appointments, newest first."""
    service = BookingService(db)
    appointments = service.list_patient_appointments(principal.id, status=status, upcoming=upcoming)

    return AppointmentListResponse(
        message="Appointments retrieved successfully",
        count=len(appointments),
        appointments=[AppointmentResponse.model_validate(a) for a in appointments]
    )

@router.get("/patient/details", response_model=AppointmentDetailsResponse)
def get_patient_appointment_details(
    principal: Principal = Depends(get_patient),
    db: Session = Depends(get_db)
):
    """The calling patient's next appointment and their appointment history."""
    service = BookingService(db)
    current, previous = service.patient_appointment_details(principal.id)

    return AppointmentDetailsResponse(
        message="Appointment details retrieved successfully",
        current_appointment=AppointmentResponse.model_validate(current) if current else None,
        previous_appointments=[AppointmentResponse.model_validate(a) for a in previous]
    )

# Doctor routes
@router.get("/doctor", response_model=AppointmentListResponse)
def list_doctor_appointments(
    status: Optional[str] = None,
    upcoming: Optional[bool] = None,
    on_date: Optional[date] = Query(None, alias="date"),
    principal: Principal = Depends(get_doctor),
    db: Session = Depends(get_db)
):
    """List the calling doctor's appointments, earliest first."""
    service = BookingService(db)
    appointments = service.list_doctor_appointments(
        principal.id, status=status, upcoming=upcoming, on_date=on_date
    )

    return AppointmentListResponse(
        message="Appointments retrieved successfully",
        count=len(appointments),
        appointments=[AppointmentResponse.model_validate(a) for a in appointments]
    )

@router.put("/{appointment_pk}/status", response_model=AppointmentEnvelope)
def update_appointment_status(
    appointment_pk: int,
    data: StatusUpdate,
    principal: Principal = Depends(get_staff),
    db: Session = Depends(get_db)
):
    """Change status as the assigned doctor or an admin."""
    service = BookingService(db)
    appointment = service.update_status(
        appointment_pk, principal.id, principal.role, data.status, notes=data.notes
    )

    return AppointmentEnvelope(
        message="Appointment status updated successfully",
        appointment=AppointmentResponse.model_validate(appointment)
    )

# Routes open to any party of the appointment
@router.get("/{appointment_pk}", response_model=AppointmentEnvelope)
def get_appointment(
    appointment_pk: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Get one appointment; only its parties and admins may see it."""
    service = BookingService(db)
    appointment = service.get_appointment(appointment_pk, principal)

    return AppointmentEnvelope(
        message="Appointment retrieved successfully",
        appointment=AppointmentResponse.model_validate(appointment)
    )

@router.put("/{appointment_pk}/cancel", response_model=AppointmentEnvelope)
def cancel_appointment(
    appointment_pk: int,
    data: Optional[CancelRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Cancel an upcoming appointment and free its slot."""
    service = BookingService(db)
    appointment = service.cancel_appointment(
        appointment_pk, principal.id, principal.role, reason=data.reason if data else None
    )

    return AppointmentEnvelope(
        message="Appointment cancelled successfully",
        appointment=AppointmentResponse.model_validate(appointment)
    )

# Admin routes
@router.get("", response_model=AppointmentPageResponse)
def list_all_appointments(
    status: Optional[str] = None,
    doctor_id: Optional[int] = Query(None, alias="doctorId"),
    patient_id: Optional[int] = Query(None, alias="patientId"),
    on_date: Optional[date] = Query(None, alias="date"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_admin),
    db: Session = Depends(get_db)
):
    """List every appointment with filters and pagination (admin only)."""
    service = BookingService(db)
    result = service.list_all_appointments(
        principal.role,
        status=status,
        doctor_id=doctor_id,
        patient_id=patient_id,
        on_date=on_date,
        page=page,
        limit=limit
    )

    return AppointmentPageResponse(
        message="All appointments retrieved successfully",
        appointments=[AppointmentResponse.model_validate(a) for a in result.items],
        total_pages=result.pages,
        current_page=result.page,
        total_appointments=result.total
    )

@router.delete("/{appointment_pk}", response_model=MessageResponse)
def delete_appointment(
    appointment_pk: int,
    principal: Principal = Depends(get_admin),
    db: Session = Depends(get_db)
):
    """Delete an appointment record (admin only)."""
    service = BookingService(db)
    service.delete_appointment(appointment_pk, principal.role)

    return MessageResponse(message="Appointment deleted successfully")
