"""
ClinicBook Scheduling Service

A FastAPI-based appointment scheduling and booking engine for the healthcare
platform: slot generation from weekly availability, conflict-free booking and
the appointment lifecycle.
"""

__version__ = "1.0.0"
