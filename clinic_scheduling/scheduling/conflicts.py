from typing import Iterable, List, Optional

from .intervals import overlaps
from .models import Appointment


def find_conflict(
    candidates: Iterable[Appointment],
    existing: Iterable[Appointment],
    ignore_id: Optional[str] = None
) -> Optional[Appointment]:
    """
    Return the first existing appointment that double-books a candidate's therapist.

    Candidates are checked in order and the scan stops at the first hit.
    Only the therapist is protected; a patient may hold overlapping
    appointments with different therapists. ``ignore_id`` excludes the
    appointment being edited so it is never reported against itself.
    """
    relevant: List[Appointment] = [app for app in existing if app.id != ignore_id]

    for candidate in candidates:
        for other in relevant:
            if other.therapist_id == candidate.therapist_id and overlaps(candidate, other):
                return other

    return None
