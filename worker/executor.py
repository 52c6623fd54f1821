"""
Job executor: runs a single queued file through the processor.

process_one(job_id) handles the full lifecycle of one attempt:

    1. Load the job (JobNotFoundError if it is gone)
    2. Out of attempts? → skip, whatever the load
    3. Host overloaded? → defer: status=pending, next_attempt pushed out
    4. Claim it: pending/failed → processing in one conditional UPDATE;
       if another trigger got there first, skip
    5. Call the processor: files above QUEUE_MAX_DIRECT_FILE_SIZE take
       process_large_file(), everything else process_file()
    6. On success: status=completed
    7. On failure (result.success is False, or the processor raised):
       delegate to RetryHandler → status=failed, attempts+1, backoff

A processor exception never escapes process_one; it becomes a failed attempt.
Store errors do escape: they are not the job's fault and must not be recorded
as one.
"""

import logging
import time
from typing import Optional

from config.settings import settings
from models.enums import JobStatus, ProcessOutcome
from models.errors import JobNotFoundError
from processors.base import AbstractFileProcessor, ProcessingResult
from storage.store import JobRecord
from worker.load import LoadMonitor
from worker.retry import RetryHandler

logger = logging.getLogger(__name__)


class JobExecutor:

    def __init__(
        self,
        store,
        processor: AbstractFileProcessor,
        load_monitor: LoadMonitor,
        retry_handler: Optional[RetryHandler] = None,
        max_attempts: Optional[int] = None,
        max_direct_file_size: Optional[int] = None,
    ):
        self._store = store
        self._processor = processor
        self._load_monitor = load_monitor
        self._retry_handler = retry_handler or RetryHandler(store)
        self._max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS
        self._max_direct_file_size = (
            max_direct_file_size
            if max_direct_file_size is not None
            else settings.QUEUE_MAX_DIRECT_FILE_SIZE
        )

    def process_one(self, job_id: int) -> ProcessOutcome:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        # a processing job belongs to another trigger; deferring it would reset it
        if job.status in (JobStatus.COMPLETED.value, JobStatus.PROCESSING.value):
            logger.debug(f"Job {job_id} is {job.status}, skipping")
            return ProcessOutcome.SKIPPED

        if job.attempts >= self._max_attempts:
            logger.debug(f"Job {job_id} is out of attempts ({job.attempts}), skipping")
            return ProcessOutcome.SKIPPED

        # ── Step 1: Load shedding ───────────────────────────────
        if self._load_monitor.is_overloaded():
            if self._retry_handler.handle_deferral(job) is None:
                return ProcessOutcome.SKIPPED
            return ProcessOutcome.DEFERRED

        # ── Step 2: Claim ───────────────────────────────────────
        if not self._store.claim(job_id, self._max_attempts):
            logger.info(f"Job {job_id} not claimable (status={job.status}, attempts={job.attempts})")
            return ProcessOutcome.SKIPPED

        # ── Step 3: Process ─────────────────────────────────────
        start_time = time.monotonic()
        try:
            result = self._run_processor(job)
        except Exception as e:
            logger.error(f"Job {job_id} [{job.reference_id}] raised: {e}", exc_info=True)
            self._retry_handler.handle_failure(job, str(e) or type(e).__name__)
            return ProcessOutcome.FAILED
        elapsed = time.monotonic() - start_time

        # ── Step 4: Record outcome ──────────────────────────────
        if not result.success:
            logger.error(f"Job {job_id} [{job.reference_id}] failed: {result.message}")
            self._retry_handler.handle_failure(job, result.message)
            return ProcessOutcome.FAILED

        self._store.update(
            job_id,
            status=JobStatus.COMPLETED,
            message=result.message,
            error_message=None,
        )
        logger.info(f"Job {job_id} [{job.reference_id}] completed in {elapsed:.3f}s")
        return ProcessOutcome.COMPLETED

    def _run_processor(self, job: JobRecord) -> ProcessingResult:
        if job.file_size > self._max_direct_file_size:
            logger.info(
                f"Job {job.id}: {job.file_size} bytes, processing {job.file_name} in chunks"
            )
            return self._processor.process_large_file(job.reference_id, job.file_path)
        return self._processor.process_file(job.reference_id, job.file_path)
