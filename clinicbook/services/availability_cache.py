from datetime import date
from typing import List, Optional
import json
import logging

import redis

logger = logging.getLogger(__name__)

class AvailabilityCache:
    """Short-lived cache of advisory slot lists.

    Entries may be stale; bookings are always decided by the database.
    """

    def __init__(self, client: Optional[redis.Redis], ttl_seconds: int = 30):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(doctor_id: int, on_date: date) -> str:
        return f"slots:{doctor_id}:{on_date.isoformat()}"

    def get(self, doctor_id: int, on_date: date) -> Optional[List[str]]:
        if self.client is None:
            return None
        try:
            cached = self.client.get(self.key(doctor_id, on_date))
        except redis.RedisError as e:
            logger.warning(f"Slot cache read failed: {str(e)}")
            return None
        if cached is None:
            return None
        return json.loads(cached)

    def set(self, doctor_id: int, on_date: date, slots: List[str]) -> None:
        if self.client is None:
            return
        try:
            self.client.setex(self.key(doctor_id, on_date), self.ttl_seconds, json.dumps(slots))
        except redis.RedisError as e:
            logger.warning(f"Slot cache write failed: {str(e)}")

    def invalidate(self, doctor_id: int, on_date: date) -> None:
        if self.client is None:
            return
        try:
            self.client.delete(self.key(doctor_id, on_date))
        except redis.RedisError as e:
            logger.warning(f"Slot cache invalidation failed: {str(e)}")

    def invalidate_doctor(self, doctor_id: int) -> None:
        if self.client is None:
            return
        try:
            keys = list(self.client.scan_iter(match=f"slots:{doctor_id}:*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Slot cache invalidation failed: {str(e)}")
