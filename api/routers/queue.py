"""
Ingest queue endpoints.

POST   /queue/jobs                  → Admin: queue a file (201, or 400 if it can't be read)
GET    /queue/jobs                  → Admin: list queue rows, newest first
GET    /queue/status/{reference_id} → Status of the latest job for a reference
DELETE /queue/jobs/{reference_id}   → Admin: drop every queue row for a reference
POST   /queue/process               → Admin: process one due batch now
POST   /queue/cleanup               → Admin: purge exhausted failed jobs now

Every route except the status poll requires the X-Admin-Token header: the job
routes take or expose server-side file paths and the others run work on demand.

The endpoints are plain `def`: the service talks to a sync SQLAlchemy engine
and Starlette runs them in its threadpool. They are intentionally thin:
translate HTTP to service calls and domain errors to status codes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_queue_service, require_admin
from api.schemas.queue import (
    CleanupResponse,
    EnqueueRequest,
    EnqueueResponse,
    JobStatusResponse,
    ProcessResponse,
    QueueJobListResponse,
    QueueJobResponse,
    RemoveResponse,
)
from models.errors import AdmissionError
from services.ingest_queue import IngestQueueService

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post(
    "/jobs",
    response_model=EnqueueResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def enqueue_job(
    job_in: EnqueueRequest,
    service: IngestQueueService = Depends(get_queue_service),
) -> EnqueueResponse:
    """
    Queue a file for background processing.

    The job is stored as pending. With process_immediately it is handed to
    the scheduler right away; otherwise a batch run is scheduled shortly
    after, as a fallback to the periodic trigger.
    """
    try:
        job_id = service.enqueue(
            job_in.reference_id,
            job_in.file_path,
            process_immediately=job_in.process_immediately,
            file_name=job_in.file_name,
        )
    except AdmissionError as e:
        raise HTTPException(
            status_code=400,
            detail={"reason": e.reason.value, "message": str(e)},
        )
    return EnqueueResponse(job_id=job_id)


@router.get("/jobs", response_model=QueueJobListResponse, dependencies=[Depends(require_admin)])
def list_jobs(
    limit: int = Query(50, ge=1, le=500, description="Maximum rows to return"),
    service: IngestQueueService = Depends(get_queue_service),
) -> QueueJobListResponse:
    jobs = [QueueJobResponse.model_validate(job) for job in service.list_jobs(limit)]
    return QueueJobListResponse(jobs=jobs, total=len(jobs))


@router.get("/status/{reference_id}", response_model=JobStatusResponse)
def get_status(
    reference_id: str,
    service: IngestQueueService = Depends(get_queue_service),
) -> JobStatusResponse:
    """
    Status of the most recent job for a reference.

    An unknown reference is not an HTTP error: the body carries
    status="not_found", so pollers can treat every answer the same way.
    """
    return JobStatusResponse(**service.get_status(reference_id).to_dict())


@router.delete(
    "/jobs/{reference_id}",
    response_model=RemoveResponse,
    dependencies=[Depends(require_admin)],
)
def remove_jobs(
    reference_id: str,
    service: IngestQueueService = Depends(get_queue_service),
) -> RemoveResponse:
    """Remove queued work for a source file that no longer exists."""
    return RemoveResponse(removed=service.remove(reference_id))


@router.post("/process", response_model=ProcessResponse, dependencies=[Depends(require_admin)])
def process_pending(
    service: IngestQueueService = Depends(get_queue_service),
) -> ProcessResponse:
    """Run one due batch synchronously and report how many jobs it handled."""
    processed = service.run_pending_now()
    return ProcessResponse(success=True, processed=processed)


@router.post("/cleanup", response_model=CleanupResponse, dependencies=[Depends(require_admin)])
def cleanup_failed(
    service: IngestQueueService = Depends(get_queue_service),
) -> CleanupResponse:
    return CleanupResponse(purged=service.cleanup())
