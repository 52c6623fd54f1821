"""
Read-through cache in front of the Queue Store.

CachedQueueStore has the same interface as QueueStore. Reads for a single job,
the pending count and the latest job per reference are served from Redis for
up to `ttl` seconds; every write goes to the database first and then drops
every cached key, so a reader never sees a value older than the last mutation
made through this store.

select_due is passed straight through: a cached due-list would keep hiding
jobs whose next_attempt has passed since it was cached.

Keys are namespaced under ingestqueue:cache: so invalidation is one SCAN +
DEL over the prefix.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from redis import Redis

from storage.store import JobDraft, JobRecord, QueueStore

logger = logging.getLogger(__name__)


class CachedQueueStore:

    KEY_PREFIX = "ingestqueue:cache:"

    def __init__(self, store: QueueStore, redis_client: Redis, ttl: int = 300):
        self._store = store
        self._redis = redis_client
        self._ttl = ttl

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def now(self) -> datetime:
        return self._store.now()

    # ── Cache plumbing ──────────────────────────────────────────

    def _read_through(self, key: str, loader: Callable[[], Any]) -> Any:
        if not self.enabled:
            return loader()

        full_key = self.KEY_PREFIX + key
        raw = self._redis.get(full_key)
        if raw is not None:
            return json.loads(raw)

        value = loader()
        self._redis.set(full_key, json.dumps(value), ex=self._ttl)
        return value

    def invalidate(self) -> None:
        """Drop every cached queue entry."""
        keys = list(self._redis.scan_iter(match=self.KEY_PREFIX + "*"))
        if keys:
            self._redis.delete(*keys)
            logger.debug(f"Invalidated {len(keys)} queue cache keys")

    # ── Reads ───────────────────────────────────────────────────

    def get(self, job_id: int) -> Optional[JobRecord]:
        data = self._read_through(
            f"job:{job_id}",
            lambda: _record_to_json(self._store.get(job_id)),
        )
        return JobRecord.from_dict(data) if data is not None else None

    def count_pending(self, max_attempts: int) -> int:
        return self._read_through(
            f"pending_count:{max_attempts}",
            lambda: self._store.count_pending(max_attempts),
        )

    def latest_for_reference(self, reference_id: str) -> Optional[JobRecord]:
        data = self._read_through(
            f"reference:{reference_id}",
            lambda: _record_to_json(self._store.latest_for_reference(reference_id)),
        )
        return JobRecord.from_dict(data) if data is not None else None

    def select_due(
        self, limit: int, max_attempts: int, now: Optional[datetime] = None
    ) -> list[JobRecord]:
        return self._store.select_due(limit, max_attempts, now=now)

    def list_jobs(self, limit: int = 50) -> list[JobRecord]:
        return self._store.list_jobs(limit)

    # ── Writes (always invalidate) ──────────────────────────────

    def insert(self, draft: JobDraft) -> int:
        try:
            return self._store.insert(draft)
        finally:
            self.invalidate()

    def update(self, job_id: int, **changes: Any) -> JobRecord:
        try:
            return self._store.update(job_id, **changes)
        finally:
            self.invalidate()

    def claim(self, job_id: int, max_attempts: int) -> bool:
        try:
            return self._store.claim(job_id, max_attempts)
        finally:
            self.invalidate()

    def defer(
        self,
        job_id: int,
        next_attempt: datetime,
        max_attempts: int,
        consume_attempt: bool = True,
    ) -> Optional[JobRecord]:
        try:
            return self._store.defer(job_id, next_attempt, max_attempts, consume_attempt)
        finally:
            self.invalidate()

    def purge_stale_failed(self, max_age: timedelta, max_attempts: int) -> int:
        try:
            return self._store.purge_stale_failed(max_age, max_attempts)
        finally:
            self.invalidate()

    def delete_for_reference(self, reference_id: str) -> int:
        try:
            return self._store.delete_for_reference(reference_id)
        finally:
            self.invalidate()


def _record_to_json(record: Optional[JobRecord]) -> Optional[dict]:
    return record.to_dict() if record is not None else None
