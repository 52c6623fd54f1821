"""
Queue Store: durable persistence of ingest jobs.

The store is the only shared mutable resource in the queue. Every method opens
its own short-lived session (created and closed within the call), so the
worker, the scheduler threads and the API can share one QueueStore instance.

Records leave the store as detached JobRecord dataclasses rather than ORM
objects: callers never hold a session, and the read cache can serialize them.

Eligibility ("due") is the heart of the queue:

    status IN (pending, failed)
    AND attempts < max_attempts
    AND next_attempt <= now          (NULL counts as due)

ordered oldest-first by created_at, so eligible jobs are served FIFO.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.orm import Session

from models.enums import ELIGIBLE_STATUSES, JobStatus
from models.errors import JobNotFoundError
from models.job import IngestJob

logger = logging.getLogger(__name__)

_DATETIME_FIELDS = ("next_attempt", "created_at", "updated_at")
_UPDATABLE_FIELDS = {
    "status",
    "attempts",
    "next_attempt",
    "message",
    "error_message",
    "file_name",
    "created_at",
}

DEFERRAL_EXHAUSTED_MESSAGE = "Host stayed overloaded until the job ran out of attempts"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class JobDraft:
    """What a caller supplies to create a job. file_size is stat'ed when omitted."""
    reference_id: str
    file_path: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None


@dataclass
class JobRecord:
    """Detached snapshot of one ingest_queue row."""
    id: int
    reference_id: str
    file_name: str
    file_path: str
    file_size: int
    status: str
    attempts: int
    next_attempt: Optional[datetime]
    message: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, job: IngestJob) -> "JobRecord":
        return cls(
            id=job.id,
            reference_id=job.reference_id,
            file_name=job.file_name,
            file_path=job.file_path,
            file_size=job.file_size,
            status=job.status,
            attempts=job.attempts,
            next_attempt=_as_utc(job.next_attempt),
            message=job.message,
            error_message=job.error_message,
            created_at=_as_utc(job.created_at),
            updated_at=_as_utc(job.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in _DATETIME_FIELDS:
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRecord":
        values = dict(data)
        for name in _DATETIME_FIELDS:
            if values.get(name) is not None:
                values[name] = _as_utc(datetime.fromisoformat(values[name]))
        return cls(**values)


class QueueStore:

    def __init__(self, session_factory, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ── Writes ──────────────────────────────────────────────────

    def insert(self, draft: JobDraft) -> int:
        """
        Create a pending job and return its id.

        Raises:
            ValueError: reference_id is empty
            OSError: file_size was not supplied and the file cannot be stat'ed
        """
        if not draft.reference_id:
            raise ValueError("reference_id is required")

        file_size = draft.file_size
        if file_size is None:
            file_size = os.path.getsize(draft.file_path)

        now = self.now()
        job = IngestJob(
            reference_id=str(draft.reference_id),
            file_name=draft.file_name or os.path.basename(draft.file_path),
            file_path=draft.file_path,
            file_size=file_size,
            status=JobStatus.PENDING.value,
            attempts=0,
            next_attempt=now,  # due immediately
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            session.add(job)
            session.flush()
            job_id = job.id
        return job_id

    def update(self, job_id: int, **changes: Any) -> JobRecord:
        """
        Apply a partial update and bump updated_at. Last write wins.

        Raises:
            JobNotFoundError: no row with this id
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        changes["updated_at"] = self.now()
        with self._session() as session:
            job = session.get(IngestJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            for name, value in changes.items():
                if isinstance(value, JobStatus):
                    value = value.value
                setattr(job, name, value)
            session.flush()
            return JobRecord.from_model(job)

    def claim(self, job_id: int, max_attempts: int) -> bool:
        """
        Atomically move a job to processing.

        A single conditional UPDATE: it only matches while the row is still
        pending/failed with attempts left, so of two overlapping triggers
        exactly one gets rowcount == 1.
        """
        stmt = (
            update(IngestJob)
            .where(
                IngestJob.id == job_id,
                IngestJob.status.in_(ELIGIBLE_STATUSES),
                IngestJob.attempts < max_attempts,
            )
            .values(status=JobStatus.PROCESSING.value, updated_at=self.now())
        )
        with self._session() as session:
            result = session.execute(stmt)
            return result.rowcount == 1

    def defer(
        self,
        job_id: int,
        next_attempt: datetime,
        max_attempts: int,
        consume_attempt: bool = True,
    ) -> Optional[JobRecord]:
        """
        Push an eligible job back to next_attempt.

        Guarded like claim(): only a pending/failed row with attempts left is
        touched, so attempts never climbs past max_attempts. A deferral that
        spends the last attempt leaves the job failed, which takes it out of
        the due set and makes it purgeable.

        Returns the updated record, or None if the job was not deferrable.
        """
        attempts = IngestJob.attempts + 1 if consume_attempt else IngestJob.attempts
        exhausted = attempts >= max_attempts
        stmt = (
            update(IngestJob)
            .where(
                IngestJob.id == job_id,
                IngestJob.status.in_(ELIGIBLE_STATUSES),
                IngestJob.attempts < max_attempts,
            )
            .values(
                attempts=attempts,
                status=case(
                    (exhausted, JobStatus.FAILED.value),
                    else_=JobStatus.PENDING.value,
                ),
                error_message=case(
                    (exhausted, DEFERRAL_EXHAUSTED_MESSAGE),
                    else_=IngestJob.error_message,
                ),
                next_attempt=next_attempt,
                updated_at=self.now(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            if session.execute(stmt).rowcount != 1:
                return None
            return JobRecord.from_model(session.get(IngestJob, job_id))

    def purge_stale_failed(self, max_age: timedelta, max_attempts: int) -> int:
        """Delete failed jobs that used up their attempts and are older than max_age."""
        cutoff = self.now() - max_age
        stmt = delete(IngestJob).where(
            IngestJob.status == JobStatus.FAILED.value,
            IngestJob.attempts >= max_attempts,
            IngestJob.created_at < cutoff,
        )
        with self._session() as session:
            result = session.execute(stmt)
            purged = result.rowcount
        if purged:
            logger.info(f"Purged {purged} failed jobs older than {cutoff.isoformat()}")
        return purged

    def delete_for_reference(self, reference_id: str) -> int:
        """Remove every queue row for a reference (used when the source file goes away)."""
        stmt = delete(IngestJob).where(IngestJob.reference_id == str(reference_id))
        with self._session() as session:
            result = session.execute(stmt)
            return result.rowcount

    # ── Reads ───────────────────────────────────────────────────

    def get(self, job_id: int) -> Optional[JobRecord]:
        with self._session() as session:
            job = session.get(IngestJob, job_id)
            return JobRecord.from_model(job) if job is not None else None

    def select_due(
        self, limit: int, max_attempts: int, now: Optional[datetime] = None
    ) -> list[JobRecord]:
        now = now or self.now()
        stmt = (
            select(IngestJob)
            .where(
                IngestJob.status.in_(ELIGIBLE_STATUSES),
                IngestJob.attempts < max_attempts,
                or_(IngestJob.next_attempt.is_(None), IngestJob.next_attempt <= now),
            )
            .order_by(IngestJob.created_at.asc(), IngestJob.id.asc())
            .limit(limit)
        )
        with self._session() as session:
            return [JobRecord.from_model(job) for job in session.scalars(stmt)]

    def count_pending(self, max_attempts: int) -> int:
        """Same predicate as select_due minus the next_attempt check."""
        stmt = select(func.count(IngestJob.id)).where(
            IngestJob.status.in_(ELIGIBLE_STATUSES),
            IngestJob.attempts < max_attempts,
        )
        with self._session() as session:
            return session.execute(stmt).scalar_one()

    def latest_for_reference(self, reference_id: str) -> Optional[JobRecord]:
        stmt = (
            select(IngestJob)
            .where(IngestJob.reference_id == str(reference_id))
            .order_by(IngestJob.id.desc())
            .limit(1)
        )
        with self._session() as session:
            job = session.scalars(stmt).first()
            return JobRecord.from_model(job) if job is not None else None

    def list_jobs(self, limit: int = 50) -> list[JobRecord]:
        stmt = (
            select(IngestJob)
            .order_by(IngestJob.created_at.desc(), IngestJob.id.desc())
            .limit(limit)
        )
        with self._session() as session:
            return [JobRecord.from_model(job) for job in session.scalars(stmt)]
