"""
Batch runner: what every trigger (periodic, opportunistic, manual) calls.

process_due_batch(limit) fetches up to `limit` due jobs, oldest first, and runs
them one at a time through JobExecutor.process_one. The default batch size is 1:
one job per trigger keeps a single trigger's footprint small.

Before each job the host load is checked again; the moment it is high the
batch stops. The remaining jobs are left untouched (not failed, not
deferred) and will be due again on the next trigger.

A store error while running one job is logged and the batch moves on.

A short pause between jobs smooths CPU and downstream API usage.
"""

import logging
import time
from typing import Optional

from config.settings import settings
from models.errors import JobNotFoundError
from worker.executor import JobExecutor
from worker.load import LoadMonitor

logger = logging.getLogger(__name__)


class BatchProcessor:

    def __init__(
        self,
        store,
        executor: JobExecutor,
        load_monitor: LoadMonitor,
        inter_job_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self._store = store
        self._executor = executor
        self._load_monitor = load_monitor
        self._inter_job_delay = (
            inter_job_delay if inter_job_delay is not None else settings.QUEUE_INTER_JOB_DELAY
        )
        self._max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS

    def process_due_batch(self, limit: Optional[int] = None) -> int:
        """
        Run one batch of due jobs.

        Returns:
            number of jobs handed to the executor (whatever their outcome)
        """
        limit = limit or settings.QUEUE_BATCH_SIZE
        jobs = self._store.select_due(limit, self._max_attempts)
        if not jobs:
            logger.debug("No due jobs")
            return 0

        logger.info(f"Processing batch of {len(jobs)} due jobs")
        processed = 0
        for index, job in enumerate(jobs):
            if self._load_monitor.is_overloaded():
                logger.info(
                    f"Stopping batch under load, {len(jobs) - index} jobs left for the next trigger"
                )
                break

            try:
                outcome = self._executor.process_one(job.id)
            except JobNotFoundError:
                # purged or deleted between select and process
                logger.warning(f"Job {job.id} disappeared before processing")
                continue
            except Exception:
                # one job's error never aborts the rest of the batch
                logger.exception(f"Job {job.id} errored outside the processor")
            else:
                logger.debug(f"Job {job.id} → {outcome.value}")
            processed += 1

            if index < len(jobs) - 1 and self._inter_job_delay > 0:
                time.sleep(self._inter_job_delay)

        logger.info(f"Batch done: {processed} processed")
        return processed
