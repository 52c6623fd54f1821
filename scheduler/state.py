"""
Trigger state kept in Redis: the opportunistic trigger's cooldown.

A single key records when the last opportunistic batch was started. The key
carries a TTL equal to the cooldown, so "may I trigger?" is one atomic
SET NX: whoever creates the key owns the slot, everyone else within the
cooldown window sees it already set.

The key is shared by every API process and worker pointing at the same Redis.
"""

import logging
from datetime import datetime
from typing import Optional

from redis import Redis

logger = logging.getLogger(__name__)


class TriggerState:

    REDIS_LAST_PROCESSED_KEY = "ingestqueue:last_processed"

    def __init__(self, redis_client: Redis, key: str = REDIS_LAST_PROCESSED_KEY):
        self._redis = redis_client
        self._key = key

    def claim_slot(self, interval_seconds: int, now: datetime) -> bool:
        """
        Take the opportunistic trigger slot if the cooldown has elapsed.

        Returns True if this caller may start a batch; the slot is then held
        for interval_seconds.
        """
        if interval_seconds <= 0:
            self._redis.set(self._key, now.isoformat())
            return True

        acquired = self._redis.set(self._key, now.isoformat(), nx=True, ex=interval_seconds)
        if not acquired:
            logger.debug("Opportunistic trigger still cooling down")
        return bool(acquired)

    def last_processed(self) -> Optional[datetime]:
        stored = self._redis.get(self._key)
        if not stored:
            return None
        value = stored.decode() if isinstance(stored, bytes) else stored
        return datetime.fromisoformat(value)

    def reset(self) -> None:
        self._redis.delete(self._key)
