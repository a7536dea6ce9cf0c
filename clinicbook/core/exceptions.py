"""Booking domain errors.

Services raise these; the application maps ``status_code`` onto the HTTP
response in one exception handler (see ``clinicbook.main``).
"""
from fastapi import status


class BookingError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Booking operation failed"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid request"


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class SlotNotFoundError(NotFoundError):
    default_detail = "Time slot not found"


class ConflictError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request conflicts with the current state"


class SlotAlreadyBookedError(ConflictError):
    default_detail = "This time slot has already been booked. Please select another time."


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not enough permissions"


class InvalidTransitionError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid status transition"
