"""
Retry handler: records what happens when a job does not complete.

Two paths, both with the same fixed backoff (no exponential growth):

    processing failed  → status=failed,  attempts+1, error_message set,
                         next_attempt = now + QUEUE_MIN_PROCESSING_INTERVAL
    host overloaded    → status=pending, attempts+1 (see below),
                         next_attempt = now + QUEUE_MIN_PROCESSING_INTERVAL;
                         status=failed instead if that was the last attempt

Failed jobs keep status=failed; they are re-picked directly by the due-query
as long as attempts < QUEUE_MAX_ATTEMPTS. Once attempts reach the maximum the
job is never selected again and the daily cleanup purges it after
QUEUE_FAILED_RETENTION_DAYS.

Load deferrals consume an attempt too unless QUEUE_DEFERRAL_CONSUMES_ATTEMPT
is off, so a job can run out of attempts on a host that stays busy without
ever having run. Such a job ends up failed like any other exhausted job and
the daily cleanup purges it.
"""

import logging
from datetime import timedelta
from typing import Optional

from config.settings import settings
from models.enums import JobStatus
from storage.store import JobRecord

logger = logging.getLogger(__name__)


class RetryHandler:

    def __init__(
        self,
        store,
        backoff_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        deferral_consumes_attempt: Optional[bool] = None,
    ):
        self._store = store
        self._backoff = timedelta(
            seconds=backoff_seconds
            if backoff_seconds is not None
            else settings.QUEUE_MIN_PROCESSING_INTERVAL
        )
        self._max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS
        self._deferral_consumes_attempt = (
            deferral_consumes_attempt
            if deferral_consumes_attempt is not None
            else settings.QUEUE_DEFERRAL_CONSUMES_ATTEMPT
        )

    def handle_failure(self, job: JobRecord, error_msg: str) -> JobRecord:
        """Record a failed processing attempt on the job."""
        attempts = job.attempts + 1
        updated = self._store.update(
            job.id,
            status=JobStatus.FAILED,
            error_message=error_msg,
            attempts=attempts,
            next_attempt=self._store.now() + self._backoff,
        )

        if attempts < self._max_attempts:
            logger.info(
                f"Job {job.id} failed, will be retried "
                f"({attempts}/{self._max_attempts}) after {updated.next_attempt.isoformat()}"
            )
        else:
            logger.warning(
                f"Job {job.id} exhausted its attempts ({self._max_attempts}): {error_msg}"
            )
        return updated

    def handle_deferral(self, job: JobRecord) -> Optional[JobRecord]:
        """
        Push a job back because the host is overloaded.

        Returns None when the job was no longer deferrable (claimed elsewhere,
        finished, or out of attempts).
        """
        updated = self._store.defer(
            job.id,
            self._store.now() + self._backoff,
            self._max_attempts,
            consume_attempt=self._deferral_consumes_attempt,
        )
        if updated is None:
            logger.info(f"Job {job.id} not deferrable (status={job.status}, attempts={job.attempts})")
            return None

        if updated.status == JobStatus.FAILED.value:
            logger.warning(
                f"Job {job.id} exhausted its attempts ({self._max_attempts}) while the host was overloaded"
            )
        else:
            logger.info(
                f"Job {job.id} deferred under load until {updated.next_attempt.isoformat()} "
                f"(attempts={updated.attempts})"
            )
        return updated
