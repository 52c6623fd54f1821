"""
Pydantic schemas for the /queue endpoints.

These are NOT database models. They define the HTTP API contract:
- EnqueueRequest: what a caller sends to queue a file (request body)
- QueueJobResponse: one queue row, as listed by GET /queue/jobs
- JobStatusResponse: the status view for a reference (HTML-escaped strings)
- ProcessResponse / CleanupResponse / RemoveResponse: admin operation results
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    """Request body for POST /queue/jobs."""

    reference_id: str = Field(
        ...,
        max_length=255,
        description="The caller's id for the source document (e.g. an attachment id)",
        examples=["attachment-42"],
    )
    file_path: str = Field(..., examples=["/data/uploads/report.pdf"])
    file_name: Optional[str] = Field(default=None, max_length=255)
    process_immediately: bool = Field(
        default=False,
        description="Process right away instead of waiting for the next batch",
    )


class EnqueueResponse(BaseModel):
    job_id: int


class QueueJobResponse(BaseModel):
    """One row of the ingest queue."""

    id: int
    reference_id: str
    file_name: str
    file_path: str
    file_size: int
    status: str
    attempts: int
    next_attempt: Optional[datetime] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    # read straight from JobRecord attributes
    model_config = {"from_attributes": True}


class QueueJobListResponse(BaseModel):
    jobs: list[QueueJobResponse]
    total: int   # rows in this response, newest first


class JobStatusResponse(BaseModel):
    """Response body for GET /queue/status/{reference_id}. status is "not_found" when unknown."""

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


class ProcessResponse(BaseModel):
    success: bool
    processed: int


class CleanupResponse(BaseModel):
    purged: int


class RemoveResponse(BaseModel):
    removed: int
