"""
Ingest job ORM model: maps to the "ingest_queue" table.

Key design decisions:
- Integer autoincrement id: jobs are created 1:1 per enqueue call, and the
  status view picks "the most recent job for a reference" by descending id
- reference_id is the external resource id (e.g. an uploaded attachment);
  it is indexed but not unique, a file can be enqueued more than once
- file_size drives the direct vs. chunked processing path
- attempts + next_attempt gate eligibility; both are indexed through the
  status/next_attempt indexes the worker's due-query filters on
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base
from models.enums import JobStatus


class IngestJob(Base):
    __tablename__ = "ingest_queue"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reference_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # ── File metadata ───────────────────────────────────────────
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # ── Queue state ─────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_attempt: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Timestamps ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<IngestJob {self.id} [{self.reference_id}] {self.status}>"
