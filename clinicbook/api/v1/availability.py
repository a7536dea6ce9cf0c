from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from ...core.database import get_db
from ...core.security import Principal
from ...api.deps import get_doctor
from ...services.availability_service import AvailabilityService
from ...schemas.availability import (
    AvailabilityCreate, TimeSlotsUpdate, AvailabilityResponse, PublicAvailabilityResponse,
    PublishData, PublishResponse, AvailabilityListResponse, PublicAvailabilityListResponse,
    AvailabilityUpdateResponse
)
from ...schemas.appointment import MessageResponse

router = APIRouter(prefix="/availability", tags=["Availability"])

@router.post("", response_model=PublishResponse, status_code=status.HTTP_201_CREATED)
def publish_availability(
    data: AvailabilityCreate,
    principal: Principal = Depends(get_doctor),
    db: Session = Depends(get_db)
):
    """Publish slots for every date in a range (doctor only)."""
    service = AvailabilityService(db)
    result = service.publish_slots(principal.id, data.start_date, data.end_date, data.time_slots)

    return PublishResponse(
        message="Availability saved successfully",
        created=len(result.created),
        updated=len(result.updated),
        data=PublishData(
            created_availabilities=[AvailabilityResponse.model_validate(a) for a in result.created],
            updated_availabilities=[AvailabilityResponse.model_validate(a) for a in result.updated]
        )
    )

@router.get("", response_model=AvailabilityListResponse)
def list_my_availability(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    principal: Principal = Depends(get_doctor),
    db: Session = Depends(get_db)
):
    """List the calling doctor's availability, booked slots included."""
    service = AvailabilityService(db)
    availabilities = service.find(principal.id, start_date, end_date)

    return AvailabilityListResponse(
        message="Availability retrieved successfully",
        count=len(availabilities),
        data=[AvailabilityResponse.model_validate(a) for a in availabilities]
    )

@router.get("/doctor/{doctor_id}", response_model=PublicAvailabilityListResponse)
def list_doctor_availability(
    doctor_id: int,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: Session = Depends(get_db)
):
    """Public view of a doctor's free slots."""
    service = AvailabilityService(db)
    availabilities = service.find(doctor_id, start_date, end_date, only_free=True)

    return PublicAvailabilityListResponse(
        message="Doctor availability retrieved successfully",
        count=len(availabilities),
        data=[PublicAvailabilityResponse.model_validate(a) for a in availabilities]
    )

@router.put("/{availability_id}", response_model=AvailabilityUpdateResponse)
def add_time_slots(
    availability_id: int,
    data: TimeSlotsUpdate,
    principal: Principal = Depends(get_doctor),
    db: Session = Depends(get_db)
):
    """Append slots to one of the doctor's availability records."""
    service = AvailabilityService(db)
    availability = service.add_slots(availability_id, principal.id, data.time_slots)

    return AvailabilityUpdateResponse(
        message="Time slots updated successfully",
        data=AvailabilityResponse.model_validate(availability)
    )

@router.delete("/{availability_id}", response_model=MessageResponse)
def delete_availability(
    availability_id: int,
    principal: Principal = Depends(get_doctor),
    db: Session = Depends(get_db)
):
    """Delete an availability record that has no bookings."""
    service = AvailabilityService(db)
    service.delete_if_unbooked(availability_id, principal.id)

    return MessageResponse(message="Availability deleted successfully")
