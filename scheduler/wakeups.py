"""
Wake-up requests handed from API processes to the process that runs the
scheduler.

An API started with RUN_SCHEDULER_IN_API=false has no running APScheduler, so
its one-shot submissions (immediate job, post-enqueue batch, opportunistic
batch) are pushed onto a Redis list instead:

    API:     RPUSH ingestqueue:wakeups '{"kind": "job", "job_id": 7}'
    worker:  LPOP ingestqueue:wakeups  → submit to its own scheduler

The list is trimmed to the newest `max_pending` entries, so a worker that is
down for a while cannot make it grow without bound. Dropping old requests is
harmless: every job is still in the store and the periodic trigger picks it up.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from redis import Redis

logger = logging.getLogger(__name__)


@dataclass
class Wakeup:
    kind: str
    job_id: Optional[int] = None
    run_at: Optional[datetime] = None


class WakeupQueue:

    REDIS_WAKEUP_KEY = "ingestqueue:wakeups"
    BATCH = "batch"
    JOB = "job"

    def __init__(
        self,
        redis_client: Redis,
        key: str = REDIS_WAKEUP_KEY,
        max_pending: int = 1000,
    ):
        self._redis = redis_client
        self._key = key
        self._max_pending = max_pending

    def request_batch(self, run_at: datetime) -> None:
        self._push({"kind": self.BATCH, "run_at": run_at.isoformat()})

    def request_job(self, job_id: int) -> None:
        self._push({"kind": self.JOB, "job_id": job_id})

    def _push(self, request: dict) -> None:
        self._redis.rpush(self._key, json.dumps(request))
        self._redis.ltrim(self._key, -self._max_pending, -1)

    def drain(self, max_items: int = 100) -> list[Wakeup]:
        """Pop up to max_items requests, oldest first."""
        wakeups = []
        while len(wakeups) < max_items:
            raw = self._redis.lpop(self._key)
            if raw is None:
                break
            try:
                data = json.loads(raw)
                run_at = data.get("run_at")
                wakeups.append(
                    Wakeup(
                        kind=data["kind"],
                        job_id=data.get("job_id"),
                        run_at=datetime.fromisoformat(run_at) if run_at else None,
                    )
                )
            except (ValueError, KeyError, TypeError):
                logger.warning(f"Dropping malformed wake-up request: {raw!r}")
        return wakeups

    def __len__(self) -> int:
        return self._redis.llen(self._key)
