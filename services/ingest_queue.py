"""
Admission API: the one facade the HTTP layer (or any embedding application)
talks to.

    enqueue(reference_id, file_path)       → insert a pending job, schedule it
    get_status(reference_id)               → latest job for the reference
    list_jobs / remove / cleanup           → admin operations
    run_pending_now()                      → manual "run pending now" trigger
    maybe_schedule_background_processing  → opportunistic trigger hook

Scheduling urgency on enqueue:

    process_immediately=True   → one-shot process_one(job_id) right away
    process_immediately=False  → one-shot batch after QUEUE_ENQUEUE_FALLBACK_DELAY,
                                 in case the periodic/opportunistic triggers
                                 are slow to fire

build_queue_service() wires every component together; the API lifespan and
the worker process both call it. With owns_scheduler=False (an API whose
scheduler runs in the worker process) submissions are forwarded through the
Redis wake-up queue instead of an APScheduler that never starts.
"""

import html
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from redis import Redis

from config.settings import settings
from models.enums import AdmissionRejection
from models.errors import AdmissionError
from processors.base import AbstractFileProcessor
from processors.registry import get_processor
from scheduler.engine import QueueScheduler
from scheduler.state import TriggerState
from scheduler.wakeups import WakeupQueue
from storage.cache import CachedQueueStore
from storage.store import JobDraft, JobRecord, QueueStore
from worker.batch import BatchProcessor
from worker.executor import JobExecutor
from worker.load import LoadMonitor
from worker.retry import RetryHandler

logger = logging.getLogger(__name__)


def _escape(value: Optional[str]) -> Optional[str]:
    return html.escape(value) if value is not None else None


@dataclass
class JobStatusView:
    """
    What a status query returns. Every string is HTML-escaped, since
    error messages carry processor output and file names carry user input.
    """
    status: str
    message: str
    job_id: Optional[int] = None
    reference_id: Optional[str] = None
    file_name: Optional[str] = None
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    next_attempt: Optional[str] = None

    @classmethod
    def not_found(cls, reference_id: Optional[str] = None) -> "JobStatusView":
        return cls(
            status="not_found",
            message="Processing job not found",
            reference_id=_escape(reference_id),
        )

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobStatusView":
        return cls(
            status=_escape(job.status),
            message=_escape(job.message or ""),
            job_id=job.id,
            reference_id=_escape(job.reference_id),
            file_name=_escape(job.file_name),
            attempts=job.attempts,
            error_message=_escape(job.error_message),
            created_at=job.created_at.isoformat(),
            updated_at=job.updated_at.isoformat(),
            next_attempt=job.next_attempt.isoformat() if job.next_attempt else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IngestQueueService:

    def __init__(self, store, scheduler: QueueScheduler):
        self.store = store
        self.scheduler = scheduler

    def enqueue(
        self,
        reference_id: str,
        file_path: str,
        process_immediately: bool = False,
        file_name: Optional[str] = None,
    ) -> int:
        """
        Queue a file for processing and return the job id.

        Raises:
            AdmissionError: reference_id is empty, or the file is missing/unreadable
        """
        if not reference_id:
            raise AdmissionError(AdmissionRejection.MISSING_REFERENCE, file_path=file_path)

        try:
            file_size = os.path.getsize(file_path)
        except OSError:
            file_size = None
        if file_size is None or not os.access(file_path, os.R_OK):
            logger.warning(f"Rejected {reference_id}: cannot read {file_path}")
            raise AdmissionError(
                AdmissionRejection.FILE_UNREADABLE,
                reference_id=reference_id,
                file_path=file_path,
            )

        job_id = self.store.insert(
            JobDraft(
                reference_id=reference_id,
                file_path=file_path,
                file_name=file_name,
                file_size=file_size,
            )
        )

        if process_immediately:
            self.scheduler.submit_job(job_id)
            logger.info(f"Enqueued job {job_id} for {reference_id} ({file_size} bytes), processing now")
        else:
            self.scheduler.submit_batch(settings.QUEUE_ENQUEUE_FALLBACK_DELAY)
            logger.info(
                f"Enqueued job {job_id} for {reference_id} ({file_size} bytes), "
                f"batch in {settings.QUEUE_ENQUEUE_FALLBACK_DELAY}s"
            )
        return job_id

    def get_status(self, reference_id: str) -> JobStatusView:
        job = self.store.latest_for_reference(reference_id)
        if job is None:
            return JobStatusView.not_found(reference_id)
        return JobStatusView.from_record(job)

    def list_jobs(self, limit: int = 50) -> list[JobRecord]:
        return self.store.list_jobs(limit)

    def remove(self, reference_id: str) -> int:
        removed = self.store.delete_for_reference(reference_id)
        if removed:
            logger.info(f"Removed {removed} queue rows for {reference_id}")
        return removed

    def run_pending_now(self) -> int:
        """Process one due batch synchronously. Returns the number processed."""
        logger.info("Manual processing triggered")
        return self.scheduler.run_due_batch()

    def cleanup(self) -> int:
        return self.scheduler.run_cleanup()

    def maybe_schedule_background_processing(self) -> bool:
        return self.scheduler.maybe_schedule_background_processing()

    def start(self) -> None:
        if not self.scheduler.owns_scheduler:
            logger.info("Scheduler runs in the worker process, submissions are forwarded to it")
            return
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.owns_scheduler:
            self.scheduler.stop()


def build_background_scheduler() -> BackgroundScheduler:
    # one executor thread: batches and immediate jobs never overlap in a process
    return BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        timezone="UTC",
    )


def build_queue_service(
    session_factory,
    redis_client: Redis,
    apscheduler: Optional[BaseScheduler] = None,
    processor: Optional[AbstractFileProcessor] = None,
    load_monitor: Optional[LoadMonitor] = None,
    owns_scheduler: bool = True,
) -> IngestQueueService:
    """Wire store → cache → worker → scheduler → service from settings."""
    store = CachedQueueStore(
        QueueStore(session_factory),
        redis_client,
        ttl=settings.QUEUE_CACHE_TTL,
    )
    processor = processor or get_processor(
        settings.PROCESSOR_NAME, chunk_size=settings.PROCESSOR_CHUNK_SIZE
    )
    load_monitor = load_monitor or LoadMonitor()

    executor = JobExecutor(store, processor, load_monitor, RetryHandler(store))
    batch = BatchProcessor(store, executor, load_monitor)
    scheduler = QueueScheduler(
        apscheduler or build_background_scheduler(),
        batch,
        executor,
        store,
        TriggerState(redis_client),
        wakeups=WakeupQueue(redis_client, max_pending=settings.QUEUE_WAKEUP_MAX_PENDING),
        owns_scheduler=owns_scheduler,
    )
    logger.info(f"Queue service ready with processor '{processor.processor_name}'")
    return IngestQueueService(store, scheduler)
