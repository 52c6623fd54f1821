"""
SQLAlchemy engine and session factory.

The queue runs synchronously everywhere: scheduler callbacks execute in
APScheduler's worker threads, and the FastAPI routes are plain `def` endpoints
that Starlette runs in its threadpool. One sync engine serves both.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config.settings import settings


class Base(DeclarativeBase):
    """Base class for all ORM models. SQLAlchemy uses this to track table metadata."""
    pass


engine = create_engine(settings.database_url, echo=False, pool_pre_ping=True)
SessionLocal = sessionmaker(engine, expire_on_commit=False)
