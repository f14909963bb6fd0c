"""Database engine, session factory and FastAPI dependency.

WHAT:
    Builds the sync SQLAlchemy engine from DATABASE_URL and exposes
    `SessionLocal`, `get_db` and `get_sync_session`.

WHY:
    Routers get a request-scoped session through `get_db`. ARQ jobs open
    theirs with `get_sync_session`; the weekly sync scheduler and the tenant
    directory take `SessionLocal` as their session factory.

REFERENCES:
    - adboard/models.py (Base registry)
    - alembic/env.py (migrations use the same URL)
"""

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from environment, loading .env if needed.

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        from adboard.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure backend/.env is loaded or env var is exported."
        )

    return database_url


DATABASE_URL = _get_database_url()


# =============================================================================
# ENGINE
# =============================================================================

# SQLite (tests/dev) does not support pool_size/max_overflow. In-memory SQLite
# needs a single shared connection so worker threads see the same tables.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in DATABASE_URL else None,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in adboard.models to ensure a single registry across the app
from .models import Base  # noqa: E402,F401


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session and ensure cleanup.

    Example:
        @router.post("")
        def report(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions opened by ARQ jobs."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
