from typing import Iterable, List, Optional
import json
import logging

import redis

from ..scheduling.models import Appointment

logger = logging.getLogger(__name__)

ALL_KEY = "appointments:all"


def patient_key(patient_id: str) -> str:
    return f"appointments:patient:{patient_id}"


def therapist_key(therapist_id: str) -> str:
    return f"appointments:therapist:{therapist_id}"


class RedisScheduleCache:
    """Cached appointment lists, keyed by patient and therapist."""

    def __init__(self, redis_client, ttl_seconds: int = 300):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def get_list(self, key: str) -> Optional[List[Appointment]]:
        try:
            cached = self.redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {str(e)}")
            return None

        if cached is None:
            return None
        return [Appointment.model_validate(item) for item in json.loads(cached)]

    async def set_list(self, key: str, appointments: List[Appointment]) -> None:
        payload = json.dumps([app.model_dump(mode="json") for app in appointments])
        try:
            self.redis.setex(key, self.ttl_seconds, payload)
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {str(e)}")

    async def invalidate(self, patient_ids: Iterable[str], therapist_ids: Iterable[str]) -> None:
        """Drop every cached list the committed appointments may appear in."""
        keys = {ALL_KEY}
        keys.update(patient_key(pid) for pid in patient_ids)
        keys.update(therapist_key(tid) for tid in therapist_ids)
        try:
            self.redis.delete(*sorted(keys))
        except redis.RedisError as e:
            # The commit already happened; stale entries expire with their TTL
            logger.warning(f"Cache invalidation failed for {sorted(keys)}: {str(e)}")
