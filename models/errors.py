"""Exception types shared by the store, the worker and the admission service."""

from typing import Optional

from models.enums import AdmissionRejection


class IngestQueueError(Exception):
    """Base exception for all ingest queue errors."""


class JobNotFoundError(IngestQueueError):
    """Raised when an operation references a queue job id that does not exist."""

    def __init__(self, job_id: int, message: Optional[str] = None):
        self.job_id = job_id
        super().__init__(message or f"Job {job_id} not found")


class AdmissionError(IngestQueueError):
    """Raised when enqueue rejects a file. The caller must retry with a valid reference."""

    def __init__(
        self,
        reason: AdmissionRejection,
        reference_id: Optional[str] = None,
        file_path: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.reason = reason
        self.reference_id = reference_id
        self.file_path = file_path
        if message is None:
            if reason == AdmissionRejection.FILE_UNREADABLE:
                message = f"File is missing or unreadable: {file_path}"
            else:
                message = "reference_id is required"
        super().__init__(message)


class ProcessingFailure(IngestQueueError):
    """Raised by a processor when a file cannot be processed."""

    def __init__(self, message: str, job_id: Optional[int] = None):
        self.job_id = job_id
        super().__init__(message)


class ProcessingTimeoutError(ProcessingFailure):
    """Raised when a processor runs past its processing time budget."""
