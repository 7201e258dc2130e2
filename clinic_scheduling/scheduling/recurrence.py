from datetime import date, datetime, timedelta
from typing import List
import uuid

from .models import Appointment


def js_weekday(day: date) -> int:
    """Weekday number with Sunday as 0, as stored in recurrence rules."""
    return (day.weekday() + 1) % 7


def new_series_id() -> str:
    return f"series_{uuid.uuid4().hex}"


def occurrence_id(series_id: str, start_time: datetime) -> str:
    """Deterministic occurrence id so re-expanding a rule yields the same ids."""
    return f"app_{series_id}_{start_time:%Y%m%dT%H%M}"


def expand_recurrences(template: Appointment) -> List[Appointment]:
    """
    Materialize every occurrence implied by the template's recurrence rule.

    The template's start/end define the time-of-day and duration of every
    occurrence. Days are walked from the template's own date up to and
    including the rule's end date, so an edited rule never creates
    occurrences before the edit point.

    Without a rule (or with an empty day set) the template is returned as is.
    """
    rule = template.recurrence_rule
    if rule is None or not rule.days:
        return [template]

    series_id = template.series_id or new_series_id()
    weekdays = set(rule.days)
    time_of_day = template.start_time.time()
    duration = template.duration

    first_day = template.start_time.date()
    current = first_day
    occurrences: List[Appointment] = []

    while current <= rule.until:
        if js_weekday(current) in weekdays and current >= first_day:
            start_time = datetime.combine(current, time_of_day)
            occurrences.append(template.model_copy(update={
                "id": occurrence_id(series_id, start_time),
                "start_time": start_time,
                "end_time": start_time + duration,
                "series_id": series_id,
                # Only the series head keeps the rule
                "recurrence_rule": rule if not occurrences else None,
            }))
        current += timedelta(days=1)

    return occurrences
