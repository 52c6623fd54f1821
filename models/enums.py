"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("pending", not "JobStatus.PENDING")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters
"""

import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"          # waiting for a trigger (also set on load deferral)
    PROCESSING = "processing"    # claimed by a worker, callback running
    COMPLETED = "completed"      # terminal
    FAILED = "failed"            # re-picked until attempts run out, then purged


# Statuses a worker may pick up, provided attempts and next_attempt allow it
ELIGIBLE_STATUSES = (JobStatus.PENDING.value, JobStatus.FAILED.value)


class ProcessOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DEFERRED = "deferred"   # host overloaded, pushed back without running
    SKIPPED = "skipped"     # another trigger already claimed it, or it is terminal


class AdmissionRejection(str, enum.Enum):
    FILE_UNREADABLE = "file_unreadable"
    MISSING_REFERENCE = "missing_reference"
