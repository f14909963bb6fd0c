"""Pytest configuration for adboard integration tests

WHAT: Provides shared fixtures for service, sync and HTTP endpoint tests
WHY: Ensures consistent test setup, database isolation, and mock configuration
REFERENCES:
    - adboard/main.py: FastAPI application
    - adboard/database.py: Database configuration
    - adboard/deps.py: Dependency injection
"""

import os
from datetime import date
from typing import Generator
from unittest.mock import AsyncMock, Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Ensure backend is in path
import sys
from pathlib import Path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
# Must be URL-safe base64-encoded 32-byte string (adboard.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.pop("SENTRY_DSN", None)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """Create in-memory test database engine.

    StaticPool keeps a single connection so sessions opened from worker
    threads (tenant lookups, freshness checks) see the same tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from adboard.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    """Create test database session with rollback."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Data Builders
# ============================================================================

@pytest.fixture
def make_snapshot(test_db_session):
    """Insert a WeeklyAdSnapshot with sensible defaults."""
    from adboard.models import WeeklyAdSnapshot

    def _make(
        ad_id="ad-1",
        ad_name="Ad One",
        campaign_name="Campaign A",
        ad_set_name="Ad Set A",
        week_start=date(2025, 1, 6),
        client_id="client-1",
        metrics=None,
        **extra,
    ):
        snapshot = WeeklyAdSnapshot(
            client_id=client_id,
            ad_id=ad_id,
            ad_name=ad_name,
            campaign_name=campaign_name,
            ad_set_name=ad_set_name,
            week_start=week_start,
            week_end=date.fromordinal(week_start.toordinal() + 6),
            metrics=metrics or {},
            **extra,
        )
        test_db_session.add(snapshot)
        test_db_session.commit()
        return snapshot

    return _make


@pytest.fixture
def make_lead(test_db_session):
    """Insert a Lead with sensible defaults (bypasses LeadService validation)."""
    from adboard.models import Lead, LeadStatusEnum

    def _make(
        ad_name="Ad One",
        status=LeadStatusEnum.new,
        lead_date=date(2025, 1, 8),
        client_id="client-1",
        service="Roofing",
        zip_code="75001",
        email=None,
        **extra,
    ):
        lead = Lead(
            client_id=client_id,
            ad_name=ad_name,
            status=status,
            lead_date=lead_date,
            service=service,
            zip_code=zip_code,
            email=email,
            **extra,
        )
        test_db_session.add(lead)
        test_db_session.commit()
        return lead

    return _make


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def mock_scheduler():
    """WeeklySyncScheduler stand-in that reports every range as fresh."""
    from adboard.services.weekly_sync_service import SyncDecision

    scheduler = Mock()
    scheduler.ensure_weekly_data_exists = AsyncMock(return_value=SyncDecision.fresh)
    scheduler.wait_for_background_syncs = AsyncMock(return_value=None)
    return scheduler


@pytest.fixture
def app(test_db_session, mock_scheduler):
    """Create FastAPI test application."""
    from adboard.main import create_app
    from adboard.database import get_db
    from adboard.deps import get_weekly_sync_scheduler

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_weekly_sync_scheduler] = lambda: mock_scheduler

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)
