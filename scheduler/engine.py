"""
Queue scheduler: decides WHEN due jobs get processed.

There is no polling loop of our own. Every trigger is an APScheduler job:

    ingestqueue:process-due   interval, every QUEUE_MIN_PROCESSING_INTERVAL
                              → process_due_batch(QUEUE_BATCH_SIZE)
    ingestqueue:cleanup       cron, daily at midnight
                              → purge_stale_failed(QUEUE_FAILED_RETENTION_DAYS)
    (anonymous)               date, one-shot
                              → process_due_batch after a delay (submit_batch)
                              → process_one(job_id) right now (submit_job)

Plus the opportunistic trigger, which is not a job at all: callers (the HTTP
middleware) invoke maybe_schedule_background_processing() after each unit of
work. If anything is pending and the cooldown in Redis has elapsed, it
submits an immediate one-shot batch.

               enqueue ──────────────┐
                                     ▼
    ┌──────────────┐   date   ┌─────────────────┐        ┌──────────────┐
    │ HTTP request │ ───────> │ BackgroundSched │ ─────> │ BatchProcessor│
    │  (any)       │ cooldown │ interval / cron │  runs  │ JobExecutor   │
    └──────────────┘          └─────────────────┘        └──────────────┘

A process that does not run the scheduler itself (an API started with
RUN_SCHEDULER_IN_API=false) forwards its one-shot submissions to a Redis
WakeupQueue instead. The process that does run it drains that queue every
QUEUE_WAKEUP_POLL_INTERVAL seconds (ingestqueue:drain-wakeups) and submits the
requests locally.

All jobs run on one executor thread, so batches never overlap inside a
process. Across processes, the store's atomic claim keeps a job from being
run twice.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler

from config.settings import settings
from models.errors import JobNotFoundError
from scheduler.state import TriggerState
from scheduler.wakeups import WakeupQueue
from worker.batch import BatchProcessor
from worker.executor import JobExecutor

logger = logging.getLogger(__name__)


class QueueScheduler:
    """
    Owns the APScheduler instance and every trigger path.

    The scheduler doesn't process files itself; it only decides when the
    BatchProcessor or JobExecutor get called.
    """

    PROCESS_DUE_JOB_ID = "ingestqueue:process-due"
    CLEANUP_JOB_ID = "ingestqueue:cleanup"
    DRAIN_WAKEUPS_JOB_ID = "ingestqueue:drain-wakeups"

    # first periodic run happens this long after registration
    FIRST_RUN_DELAY = 60

    def __init__(
        self,
        apscheduler: BaseScheduler,
        batch: BatchProcessor,
        executor: JobExecutor,
        store,
        state: TriggerState,
        interval_seconds: Optional[int] = None,
        wakeups: Optional[WakeupQueue] = None,
        owns_scheduler: bool = True,
    ):
        self._apscheduler = apscheduler
        self._batch = batch
        self._executor = executor
        self._store = store
        self._state = state
        self._interval = interval_seconds or settings.QUEUE_MIN_PROCESSING_INTERVAL
        self._wakeups = wakeups
        self._owns_scheduler = owns_scheduler

    @property
    def owns_scheduler(self) -> bool:
        return self._owns_scheduler

    @property
    def can_submit(self) -> bool:
        return self._owns_scheduler or self._wakeups is not None

    def start(self) -> None:
        """Register the recurring triggers (if missing) and start the scheduler."""
        self.ensure_processing_scheduled()
        self.ensure_cleanup_scheduled()
        self.ensure_wakeup_drain_scheduled()
        if not self._apscheduler.running:
            self._apscheduler.start()
        logger.info(f"Queue scheduler started, processing every {self._interval}s")

    def stop(self) -> None:
        if self._apscheduler.running:
            self._apscheduler.shutdown(wait=False)
        logger.info("Queue scheduler stopped")

    # ── Recurring triggers ──────────────────────────────────────

    def ensure_processing_scheduled(self) -> bool:
        """
        Register the periodic batch trigger if it is not registered.

        Safe to call any number of times. Returns True if it registered one.
        """
        if self._apscheduler.get_job(self.PROCESS_DUE_JOB_ID) is not None:
            return False

        self._apscheduler.add_job(
            self.run_due_batch,
            "interval",
            seconds=self._interval,
            id=self.PROCESS_DUE_JOB_ID,
            next_run_time=datetime.now(timezone.utc) + timedelta(seconds=self.FIRST_RUN_DELAY),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Registered periodic processing every {self._interval}s")
        return True

    def ensure_cleanup_scheduled(self) -> bool:
        if self._apscheduler.get_job(self.CLEANUP_JOB_ID) is not None:
            return False

        self._apscheduler.add_job(
            self.run_cleanup,
            "cron",
            hour=0,
            minute=0,
            id=self.CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Registered daily cleanup of exhausted failed jobs")
        return True

    def ensure_wakeup_drain_scheduled(self) -> bool:
        if self._wakeups is None or self._apscheduler.get_job(self.DRAIN_WAKEUPS_JOB_ID) is not None:
            return False

        self._apscheduler.add_job(
            self.drain_wakeups,
            "interval",
            seconds=settings.QUEUE_WAKEUP_POLL_INTERVAL,
            id=self.DRAIN_WAKEUPS_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Draining wake-up requests every {settings.QUEUE_WAKEUP_POLL_INTERVAL}s")
        return True

    # ── One-shot submissions ────────────────────────────────────

    def submit_batch(self, delay_seconds: float = 0) -> None:
        """Run one due batch after delay_seconds."""
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        if self._owns_scheduler:
            self._add_batch(run_date)
        elif self._wakeups is not None:
            self._wakeups.request_batch(run_date)
            logger.info(f"Batch at {run_date.isoformat()} forwarded to the scheduler process")
        else:
            logger.warning("No scheduler in this process and no wake-up queue, batch not submitted")

    def submit_job(self, job_id: int) -> None:
        """Run process_one(job_id) as soon as the executor thread is free."""
        if self._owns_scheduler:
            self._add_job(job_id)
        elif self._wakeups is not None:
            self._wakeups.request_job(job_id)
            logger.info(f"Job {job_id} forwarded to the scheduler process")
        else:
            logger.warning(f"No scheduler in this process and no wake-up queue, job {job_id} not submitted")

    # one-shot jobs wait behind a running batch on the single executor thread,
    # so they have no misfire grace limit
    def _add_batch(self, run_date: datetime) -> None:
        self._apscheduler.add_job(
            self.run_due_batch, "date", run_date=run_date, misfire_grace_time=None
        )
        logger.info(f"Batch submitted to run at {run_date.isoformat()}")

    def _add_job(self, job_id: int) -> None:
        self._apscheduler.add_job(
            self.run_job,
            "date",
            run_date=datetime.now(timezone.utc),
            args=[job_id],
            misfire_grace_time=None,
        )
        logger.info(f"Job {job_id} submitted for immediate processing")

    def drain_wakeups(self) -> int:
        """
        Submit every forwarded request to this process's scheduler.

        Batch requests in one drain collapse into a single batch at the
        earliest requested time; a time already past means now. Returns the
        number of requests consumed.
        """
        if self._wakeups is None:
            return 0

        wakeups = self._wakeups.drain()
        now = datetime.now(timezone.utc)
        batch_at = None
        for wakeup in wakeups:
            if wakeup.kind == WakeupQueue.JOB and wakeup.job_id is not None:
                self._add_job(wakeup.job_id)
            elif wakeup.kind == WakeupQueue.BATCH:
                run_at = max(wakeup.run_at or now, now)
                batch_at = run_at if batch_at is None else min(batch_at, run_at)
        if batch_at is not None:
            self._add_batch(batch_at)

        if wakeups:
            logger.info(f"Drained {len(wakeups)} wake-up requests")
        return len(wakeups)

    def maybe_schedule_background_processing(self) -> bool:
        """
        Opportunistic trigger: submit an immediate batch if anything is
        pending and the cooldown has elapsed. Returns True if it submitted.
        """
        if not self.can_submit:
            return False
        if self._store.count_pending(settings.QUEUE_MAX_ATTEMPTS) == 0:
            return False
        if not self._state.claim_slot(self._interval, self._store.now()):
            return False

        logger.info("Pending jobs found, scheduling background processing")
        self.submit_batch(0)
        return True

    # ── Job bodies (run on the APScheduler executor thread) ────

    def run_due_batch(self) -> int:
        if self._owns_scheduler:
            self.ensure_processing_scheduled()
        return self._batch.process_due_batch(settings.QUEUE_BATCH_SIZE)

    def run_job(self, job_id: int) -> None:
        try:
            outcome = self._executor.process_one(job_id)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} no longer exists, nothing to process")
            return
        logger.info(f"Immediate job {job_id} → {outcome.value}")

    def run_cleanup(self) -> int:
        purged = self._store.purge_stale_failed(
            timedelta(days=settings.QUEUE_FAILED_RETENTION_DAYS),
            settings.QUEUE_MAX_ATTEMPTS,
        )
        logger.info(f"Cleanup purged {purged} exhausted failed jobs")
        return purged
