"""
Tests for BatchProcessor.process_due_batch.

A batch takes due jobs oldest-first, re-checks load before each one and
stops (leaving the rest untouched) the moment the host is overloaded.
"""

from conftest import FakeLoadMonitor, FakeProcessor
from models.enums import JobStatus
from processors.base import ProcessingResult
from worker.batch import BatchProcessor
from worker.executor import JobExecutor


def test_empty_queue_processes_nothing(batch):
    assert batch.process_due_batch(5) == 0


def test_default_batch_takes_oldest_job_only(batch, add_job, cached_store, clock):
    first = add_job("first")
    clock.advance(seconds=1)
    second = add_job("second")

    assert batch.process_due_batch(1) == 1
    assert cached_store.get(first).status == JobStatus.COMPLETED.value
    assert cached_store.get(second).status == JobStatus.PENDING.value


def test_batch_processes_up_to_limit(batch, add_job, cached_store, clock):
    ids = []
    for i in range(4):
        ids.append(add_job(f"ref-{i}"))
        clock.advance(seconds=1)

    assert batch.process_due_batch(3) == 3
    statuses = [cached_store.get(job_id).status for job_id in ids]
    assert statuses == ["completed", "completed", "completed", "pending"]


def test_failures_do_not_abort_batch(cached_store, add_job, retry_handler, clock):
    processor = FakeProcessor(result=ProcessingResult.failed("bad file"))
    monitor = FakeLoadMonitor()
    executor = JobExecutor(cached_store, processor, monitor, retry_handler, max_attempts=3)
    batch = BatchProcessor(cached_store, executor, monitor, inter_job_delay=0, max_attempts=3)

    a = add_job("a")
    clock.advance(seconds=1)
    b = add_job("b")

    assert batch.process_due_batch(2) == 2
    assert cached_store.get(a).status == JobStatus.FAILED.value
    assert cached_store.get(b).status == JobStatus.FAILED.value


def test_batch_stops_when_load_rises(cached_store, add_job, retry_handler, clock):
    # batch check, executor check for job 1, then batch check → overloaded
    monitor = FakeLoadMonitor(readings=[False, False, True])
    processor = FakeProcessor()
    executor = JobExecutor(cached_store, processor, monitor, retry_handler, max_attempts=3)
    batch = BatchProcessor(cached_store, executor, monitor, inter_job_delay=0, max_attempts=3)

    ids = []
    for i in range(3):
        ids.append(add_job(f"ref-{i}"))
        clock.advance(seconds=1)

    assert batch.process_due_batch(3) == 1
    assert cached_store.get(ids[0]).status == JobStatus.COMPLETED.value
    # remaining jobs are untouched, not failed or deferred
    for job_id in ids[1:]:
        job = cached_store.get(job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 0


def test_overloaded_from_the_start_touches_nothing(cached_store, add_job, executor, processor):
    monitor = FakeLoadMonitor(overloaded=True)
    batch = BatchProcessor(cached_store, executor, monitor, inter_job_delay=0, max_attempts=3)
    job_id = add_job()

    assert batch.process_due_batch(1) == 0
    assert cached_store.get(job_id).attempts == 0
    assert processor.calls == []


def test_vanished_job_is_skipped(batch, add_job, cached_store, monkeypatch, clock):
    gone = add_job("gone")
    clock.advance(seconds=1)
    kept = add_job("kept")

    real_select = cached_store.select_due

    def select_then_delete(limit, max_attempts, now=None):
        jobs = real_select(limit, max_attempts, now=now)
        cached_store.delete_for_reference("gone")
        return jobs

    monkeypatch.setattr(cached_store, "select_due", select_then_delete)

    assert batch.process_due_batch(2) == 1
    assert cached_store.get(gone) is None
    assert cached_store.get(kept).status == JobStatus.COMPLETED.value


def test_pause_between_jobs(cached_store, add_job, executor, load_monitor, monkeypatch, clock):
    sleeps = []
    monkeypatch.setattr("worker.batch.time.sleep", sleeps.append)
    batch = BatchProcessor(cached_store, executor, load_monitor, inter_job_delay=0.1, max_attempts=3)

    for i in range(3):
        add_job(f"ref-{i}")
        clock.advance(seconds=1)

    batch.process_due_batch(3)
    assert sleeps == [0.1, 0.1]


def test_store_error_on_one_job_does_not_abort_batch(batch, add_job, cached_store, monkeypatch, clock):
    broken = add_job("broken")
    clock.advance(seconds=1)
    healthy = add_job("healthy")

    real_claim = cached_store.claim

    def claim(job_id, max_attempts):
        if job_id == broken:
            raise RuntimeError("connection reset")
        return real_claim(job_id, max_attempts)

    monkeypatch.setattr(cached_store, "claim", claim)

    assert batch.process_due_batch(2) == 2
    assert cached_store.get(broken).status == JobStatus.PENDING.value
    assert cached_store.get(healthy).status == JobStatus.COMPLETED.value
