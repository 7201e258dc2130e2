"""
Clinic Scheduling Engine

Decides whether appointments and recurring series may be placed on a clinic
calendar: recurrence expansion, per-slot capacity limits and therapist
double-booking checks, exposed over a FastAPI service.
"""

__version__ = "1.0.0"
