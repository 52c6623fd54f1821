"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., QUEUE_MAX_ATTEMPTS env var → Settings.QUEUE_MAX_ATTEMPTS)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

The QUEUE_* defaults are the queue's operating constants: one job per trigger,
three attempts, a ten minute backoff, a five minute processing budget and a
5 MB direct-processing ceiling. Every module imports `settings` from here.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── PostgreSQL ──────────────────────────────────────────────
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "ingestqueue"
    POSTGRES_PASSWORD: str = "ingestqueue"
    POSTGRES_DB: str = "ingestqueue"

    # ── Redis ───────────────────────────────────────────────────
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # ── Queue ───────────────────────────────────────────────────
    QUEUE_BATCH_SIZE: int = 1                         # jobs per trigger, intentionally serial
    QUEUE_MAX_ATTEMPTS: int = 3
    QUEUE_MIN_PROCESSING_INTERVAL: int = 600          # seconds: backoff, periodic interval, cooldown
    QUEUE_MAX_PROCESSING_TIME: int = 300              # seconds per job
    QUEUE_MAX_DIRECT_FILE_SIZE: int = 5 * 1024 * 1024  # bytes; larger files take the chunked path
    QUEUE_FAILED_RETENTION_DAYS: int = 7
    QUEUE_CACHE_TTL: int = 300                        # seconds; 0 disables the read cache
    QUEUE_INTER_JOB_DELAY: float = 0.1                # seconds between jobs in one batch
    QUEUE_ENQUEUE_FALLBACK_DELAY: int = 60            # seconds before the post-enqueue batch run
    QUEUE_DEFERRAL_CONSUMES_ATTEMPT: bool = True
    QUEUE_WAKEUP_POLL_INTERVAL: int = 5              # seconds between drains of forwarded submissions
    QUEUE_WAKEUP_MAX_PENDING: int = 1000             # forwarded submissions kept while no worker drains

    # ── Load shedding ───────────────────────────────────────────
    LOAD_AVERAGE_THRESHOLD: float = 0.5   # 1-minute load average per core
    MEMORY_USAGE_THRESHOLD: float = 0.6   # fraction of MEMORY_LIMIT_BYTES
    MEMORY_LIMIT_BYTES: int = 0           # 0 → total physical memory

    # ── Processor ───────────────────────────────────────────────
    PROCESSOR_NAME: str = "pdf_text"
    PROCESSOR_CHUNK_SIZE: int = 1000      # characters per emitted chunk

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    RUN_SCHEDULER_IN_API: bool = True
    ADMIN_TOKEN: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import this everywhere
settings = Settings()
