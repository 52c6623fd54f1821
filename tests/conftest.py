"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite in memory (one shared connection via StaticPool)
- Redis → fakeredis (pure Python Redis mock)
- APScheduler → MagicMock, so submissions can be inspected without threads
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
- Host load → a FakeLoadMonitor the test flips by hand
- The clock → a FakeClock the test advances by hand

This means tests:
- Run without Docker
- Run in milliseconds (no network, no disk, no sleeping)
- Are fully isolated (each test gets a fresh database)
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.main import create_app
from models.base import Base
from processors.base import AbstractFileProcessor, ProcessingResult
from scheduler.engine import QueueScheduler
from scheduler.state import TriggerState
from scheduler.wakeups import WakeupQueue
from services.ingest_queue import IngestQueueService
from storage.cache import CachedQueueStore
from storage.store import JobDraft, QueueStore
from worker.batch import BatchProcessor
from worker.executor import JobExecutor
from worker.retry import RetryHandler

ADMIN_TOKEN = "test-admin-token"
FIVE_MB = 5 * 1024 * 1024


class FakeClock:
    """Callable clock for QueueStore; only moves when advance() is called."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FakeLoadMonitor:
    """
    Stand-in for LoadMonitor. `readings` are consumed one per check; once
    they run out, `overloaded` is returned.
    """

    def __init__(self, overloaded: bool = False, readings=None):
        self.overloaded = overloaded
        self.readings = list(readings or [])
        self.checks = 0

    def is_overloaded(self) -> bool:
        self.checks += 1
        if self.readings:
            return self.readings.pop(0)
        return self.overloaded


class FakeProcessor(AbstractFileProcessor):
    """Records which path was called and returns a canned result (or raises)."""

    def __init__(self, result: ProcessingResult = None, error: Exception = None):
        self.result = result or ProcessingResult.ok("Processed 3 chunks")
        self.error = error
        self.calls = []

    def _handle(self, path_kind: str, reference_id: str, path: str) -> ProcessingResult:
        self.calls.append((path_kind, reference_id, path))
        if self.error is not None:
            raise self.error
        return self.result

    def process_file(self, reference_id, path):
        return self._handle("direct", reference_id, path)

    def process_large_file(self, reference_id, path):
        return self._handle("large", reference_id, path)

    @property
    def processor_name(self) -> str:
        return "fake"


@pytest.fixture
def db_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = fakeredis.FakeRedis()
    yield r
    r.flushall()


@pytest.fixture
def store(session_factory, clock):
    return QueueStore(session_factory, clock=clock)


@pytest.fixture
def cached_store(store, fake_redis):
    return CachedQueueStore(store, fake_redis, ttl=300)


@pytest.fixture
def make_file(tmp_path):
    """Write a file of `size` bytes (or with `content`) and return its path."""

    def _make(name: str = "doc.txt", size: int = None, content: bytes = None) -> str:
        path = tmp_path / name
        if content is None:
            content = b"a" * (size if size is not None else 128)
        path.write_bytes(content)
        return str(path)

    return _make


@pytest.fixture
def add_job(store):
    """Insert a job without touching the filesystem (file_size given explicitly)."""

    def _add(reference_id: str = "ref-1", file_size: int = 1024, **changes) -> int:
        job_id = store.insert(
            JobDraft(
                reference_id=reference_id,
                file_path=f"/data/{reference_id}.pdf",
                file_size=file_size,
            )
        )
        if changes:
            store.update(job_id, **changes)
        return job_id

    return _add


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def load_monitor():
    return FakeLoadMonitor()


@pytest.fixture
def retry_handler(cached_store):
    return RetryHandler(cached_store, backoff_seconds=600, max_attempts=3)


@pytest.fixture
def executor(cached_store, processor, load_monitor, retry_handler):
    return JobExecutor(
        cached_store,
        processor,
        load_monitor,
        retry_handler,
        max_attempts=3,
        max_direct_file_size=FIVE_MB,
    )


@pytest.fixture
def batch(cached_store, executor, load_monitor):
    return BatchProcessor(cached_store, executor, load_monitor, inter_job_delay=0, max_attempts=3)


@pytest.fixture
def apscheduler():
    """A scheduler double: no jobs registered, not running."""
    mock = MagicMock()
    mock.get_job.return_value = None
    mock.running = False
    return mock


@pytest.fixture
def trigger_state(fake_redis):
    return TriggerState(fake_redis)


@pytest.fixture
def wakeup_queue(fake_redis):
    return WakeupQueue(fake_redis)


@pytest.fixture
def queue_scheduler(apscheduler, batch, executor, cached_store, trigger_state, wakeup_queue):
    return QueueScheduler(
        apscheduler, batch, executor, cached_store, trigger_state,
        interval_seconds=600, wakeups=wakeup_queue,
    )


@pytest.fixture
def service(cached_store, queue_scheduler):
    return IngestQueueService(cached_store, queue_scheduler)


@pytest.fixture
def app(service, session_factory, fake_redis):
    """
    The FastAPI app with app.state wired by hand: the lifespan does not run
    under ASGITransport. Gets the in-memory service, DB sessions and fake Redis.
    """
    app = create_app(admin_token=ADMIN_TOKEN)
    app.state.queue_service = service
    app.state.session_factory = session_factory
    app.state.redis = fake_redis
    return app


@pytest_asyncio.fixture
async def client(app):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    ASGITransport means requests go directly to the app in-process,
    no HTTP server or network involved.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
