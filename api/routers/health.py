"""
Liveness of the queue's two backing services.

The queue store lives in Postgres and the read cache, trigger cooldown and
wake-up queue live in Redis; a queue API without either cannot admit or
report on jobs.
"""

from fastapi import APIRouter, Depends
from redis import Redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_db, get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
) -> dict:
    db.execute(text("SELECT 1"))
    redis.ping()
    return {"status": "healthy", "postgres": "ok", "redis": "ok"}
