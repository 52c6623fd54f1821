"""
Worker process: runs the queue scheduler outside the API.

Pair it with an API started with RUN_SCHEDULER_IN_API=false. The worker owns
the only running QueueScheduler (APScheduler, one executor thread):

    1. the periodic batch trigger, every QUEUE_MIN_PROCESSING_INTERVAL
    2. the daily cleanup of exhausted failed jobs
    3. the drain of wake-up requests the API forwards through Redis
       (immediate jobs, post-enqueue and opportunistic batches)

SIGINT or SIGTERM stops the scheduler and exits.

    ingest-queue-worker
    python -m worker.main
"""

import logging
import signal
import threading

from redis import Redis

from config.settings import settings
from models.base import Base, SessionLocal, engine
from services.ingest_queue import build_queue_service

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    Base.metadata.create_all(engine)

    redis_client = Redis.from_url(settings.redis_url)
    service = build_queue_service(SessionLocal, redis_client, owns_scheduler=True)
    service.start()

    stopped = threading.Event()

    def shutdown(signum, frame):
        logger.info(f"Signal {signum} received, stopping the queue scheduler")
        service.stop()
        stopped.set()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info(
        f"Ingest worker running: batches every {settings.QUEUE_MIN_PROCESSING_INTERVAL}s, "
        f"wake-ups every {settings.QUEUE_WAKEUP_POLL_INTERVAL}s"
    )
    stopped.wait()

    redis_client.close()
    engine.dispose()
    logger.info("Ingest worker exited")


if __name__ == "__main__":
    main()
