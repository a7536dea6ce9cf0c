from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from datetime import date
from typing import List, Optional

MAX_SLOT_LENGTH = 20

def clean_slots(value: List[str]) -> List[str]:
    slots = [slot.strip() for slot in value]
    for slot in slots:
        if len(slot) > MAX_SLOT_LENGTH:
            raise ValueError(f"Time slots must be {MAX_SLOT_LENGTH} characters or fewer.")
    return slots

class CamelModel(BaseModel):
    """Camel-case keys on the wire, snake_case accepted on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

class AvailabilityCreate(CamelModel):
    start_date: date
    end_date: date
    time_slots: List[str]

    @field_validator("time_slots")
    @classmethod
    def strip_slots(cls, value: List[str]) -> List[str]:
        return clean_slots(value)

class TimeSlotsUpdate(CamelModel):
    time_slots: List[str]

    @field_validator("time_slots")
    @classmethod
    def strip_slots(cls, value: List[str]) -> List[str]:
        return clean_slots(value)

class TimeSlotResponse(CamelModel):
    id: int
    slot: str
    is_booked: bool
    patient_id: Optional[int] = None

class PublicTimeSlotResponse(CamelModel):
    id: int
    slot: str
    is_booked: bool

class AvailabilityResponse(CamelModel):
    id: int
    doctor_id: int
    doctor_email: str
    date: date
    time_slots: List[TimeSlotResponse]

class PublicAvailabilityResponse(CamelModel):
    id: int
    doctor_id: int
    date: date
    time_slots: List[PublicTimeSlotResponse]

class PublishData(CamelModel):
    created_availabilities: List[AvailabilityResponse]
    updated_availabilities: List[AvailabilityResponse]

class PublishResponse(CamelModel):
    message: str
    created: int
    updated: int
    data: PublishData

class AvailabilityListResponse(CamelModel):
    message: str
    count: int
    data: List[AvailabilityResponse]

class PublicAvailabilityListResponse(CamelModel):
    message: str
    count: int
    data: List[PublicAvailabilityResponse]

class AvailabilityUpdateResponse(CamelModel):
    message: str
    data: AvailabilityResponse
