from .models import Appointment


def overlaps(a: Appointment, b: Appointment) -> bool:
    """Half-open overlap test: back-to-back appointments do not overlap."""
    return a.start_time < b.end_time and a.end_time > b.start_time
