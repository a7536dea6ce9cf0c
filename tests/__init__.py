"""
Test suite for the Clinic Booking Service.

Contains unit tests for the booking services and integration tests for the API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
