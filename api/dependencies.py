"""
FastAPI dependency injection.

How this works:
- An endpoint declares `service: IngestQueueService = Depends(get_queue_service)`
- FastAPI calls the dependency before the endpoint runs
- Everything lives on app.state, set up once by the lifespan (or by a test)

Admin-only endpoints add `Depends(require_admin)`: the X-Admin-Token header
must equal the configured ADMIN_TOKEN. With no token configured, admin
endpoints are closed.
"""

import secrets
from typing import Generator, Optional

from fastapi import Header, HTTPException, Request
from redis import Redis
from sqlalchemy.orm import Session

from services.ingest_queue import IngestQueueService


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yields a database session, auto-closes when the request ends."""
    session: Session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_redis(request: Request) -> Redis:
    """Returns the Redis client stored on the app during startup."""
    return request.app.state.redis


def get_queue_service(request: Request) -> IngestQueueService:
    return request.app.state.queue_service


def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> None:
    expected = request.app.state.admin_token
    if not expected:
        raise HTTPException(status_code=403, detail="Admin operations are disabled")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Invalid admin token")
