"""
Tests for JobExecutor.process_one.

These test the per-job lifecycle:
- success → completed, never due again
- failure result or exception → failed, attempts+1, next_attempt = now + 600s
- overloaded host → deferred back to pending without calling the processor
- lost claim → skipped
- the 5 MB size boundary between the direct and the chunked path
"""

from datetime import timedelta

import pytest

from conftest import FIVE_MB, FakeLoadMonitor, FakeProcessor
from models.enums import JobStatus, ProcessOutcome
from models.errors import JobNotFoundError, ProcessingTimeoutError
from processors.base import ProcessingResult
from storage.store import JobDraft
from worker.executor import JobExecutor
from worker.retry import RetryHandler


def test_success_marks_completed(executor, cached_store, add_job, processor):
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.COMPLETED

    job = cached_store.get(job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.message == "Processed 3 chunks"
    assert job.attempts == 0
    assert len(processor.calls) == 1
    assert cached_store.select_due(10, 3) == []


def test_failure_result_is_recorded(cached_store, add_job, load_monitor, retry_handler, clock):
    processor = FakeProcessor(result=ProcessingResult.failed("X"))
    executor = JobExecutor(cached_store, processor, load_monitor, retry_handler, max_attempts=3)
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.FAILED

    job = cached_store.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "X"
    assert job.attempts == 1
    assert job.next_attempt == clock() + timedelta(seconds=600)


def test_processor_exception_is_recorded(cached_store, add_job, load_monitor, retry_handler):
    processor = FakeProcessor(error=RuntimeError("embedding API down"))
    executor = JobExecutor(cached_store, processor, load_monitor, retry_handler, max_attempts=3)
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.FAILED

    job = cached_store.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "embedding API down"
    assert job.attempts == 1


def test_timeout_is_a_failed_attempt(cached_store, add_job, load_monitor, retry_handler):
    processor = FakeProcessor(error=ProcessingTimeoutError("exceeded 300s"))
    executor = JobExecutor(cached_store, processor, load_monitor, retry_handler, max_attempts=3)
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.FAILED
    assert cached_store.get(job_id).error_message == "exceeded 300s"


def test_failed_job_is_retried_after_backoff(cached_store, add_job, load_monitor, retry_handler, clock):
    processor = FakeProcessor(result=ProcessingResult.failed("flaky"))
    executor = JobExecutor(cached_store, processor, load_monitor, retry_handler, max_attempts=3)
    job_id = add_job()

    executor.process_one(job_id)
    assert cached_store.select_due(10, 3) == []

    clock.advance(seconds=600)
    processor.result = ProcessingResult.ok("fine now")
    assert [job.id for job in cached_store.select_due(10, 3)] == [job_id]
    assert executor.process_one(job_id) == ProcessOutcome.COMPLETED


def test_overload_defers_without_processing(executor, cached_store, add_job, load_monitor, processor, clock):
    load_monitor.overloaded = True
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.DEFERRED

    job = cached_store.get(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert job.error_message is None
    assert job.next_attempt == clock() + timedelta(seconds=600)
    assert processor.calls == []


def test_deferral_can_keep_attempts(cached_store, add_job, processor, clock):
    retry = RetryHandler(cached_store, backoff_seconds=600, max_attempts=3,
                         deferral_consumes_attempt=False)
    executor = JobExecutor(cached_store, processor, FakeLoadMonitor(overloaded=True), retry,
                           max_attempts=3)
    job_id = add_job()

    assert executor.process_one(job_id) == ProcessOutcome.DEFERRED
    assert cached_store.get(job_id).attempts == 0


def test_unknown_job_raises(executor):
    with pytest.raises(JobNotFoundError):
        executor.process_one(12345)


def test_completed_job_is_skipped(executor, add_job, processor):
    job_id = add_job(status=JobStatus.COMPLETED)
    assert executor.process_one(job_id) == ProcessOutcome.SKIPPED
    assert processor.calls == []


def test_processing_job_is_skipped_even_under_load(executor, cached_store, add_job, load_monitor):
    job_id = add_job(status=JobStatus.PROCESSING)
    load_monitor.overloaded = True

    assert executor.process_one(job_id) == ProcessOutcome.SKIPPED
    assert cached_store.get(job_id).status == JobStatus.PROCESSING.value


def test_exhausted_job_is_skipped(executor, add_job, processor):
    job_id = add_job(status=JobStatus.FAILED, attempts=3)
    assert executor.process_one(job_id) == ProcessOutcome.SKIPPED
    assert processor.calls == []


def test_lost_claim_is_skipped(executor, cached_store, add_job, processor, monkeypatch):
    job_id = add_job()
    # another trigger claims it between our read and our claim
    monkeypatch.setattr(cached_store, "claim", lambda job_id, max_attempts: False)

    assert executor.process_one(job_id) == ProcessOutcome.SKIPPED
    assert processor.calls == []


def test_deferrals_until_exhausted_leave_job_purgeable(executor, cached_store, add_job, load_monitor, clock):
    load_monitor.overloaded = True
    job_id = add_job()

    outcomes = []
    for _ in range(3):
        outcomes.append(executor.process_one(job_id))
        clock.advance(seconds=600)
    assert outcomes == [ProcessOutcome.DEFERRED] * 3

    job = cached_store.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3

    clock.advance(days=30)
    assert cached_store.purge_stale_failed(timedelta(days=7), 3) == 1
    assert cached_store.get(job_id) is None


def test_exhausted_job_is_not_deferred_under_load(executor, cached_store, add_job, load_monitor):
    job_id = add_job(attempts=3)
    load_monitor.overloaded = True

    assert executor.process_one(job_id) == ProcessOutcome.SKIPPED
    assert cached_store.get(job_id).attempts == 3
    assert load_monitor.checks == 0


# ── Size threshold ──────────────────────────────────────────


@pytest.mark.parametrize(
    "file_size, expected_path",
    [
        (1024, "direct"),
        (FIVE_MB, "direct"),
        (FIVE_MB + 1, "large"),
        (6 * 1024 * 1024, "large"),
    ],
)
def test_size_selects_processing_path(executor, add_job, processor, file_size, expected_path):
    job_id = add_job(file_size=file_size)
    executor.process_one(job_id)
    assert processor.calls[0][0] == expected_path


def test_large_file_end_to_end(cached_store, load_monitor, retry_handler, make_file):
    """An actual 6 MB file on disk goes down the chunked path."""
    path = make_file("big.txt", size=6 * 1024 * 1024)
    job_id = cached_store.insert(JobDraft(reference_id="big", file_path=path))
    processor = FakeProcessor()
    executor = JobExecutor(cached_store, processor, load_monitor, retry_handler,
                           max_attempts=3, max_direct_file_size=FIVE_MB)

    executor.process_one(job_id)
    assert processor.calls == [("large", "big", path)]
