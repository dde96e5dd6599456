"""
Test suite for the ClinicBook scheduling service.

Contains unit and integration tests for slot generation, booking,
the appointment lifecycle and the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
