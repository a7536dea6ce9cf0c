"""
Clinic Booking Service

A FastAPI service where doctors publish dated time slots and patients book
them, with an appointment lifecycle that keeps slots and bookings consistent.
"""

__version__ = "1.0.0"
