"""Dependency providers and settings management."""

from functools import lru_cache
from typing import List, Optional

from fastapi import Depends
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import SessionLocal, get_db
from .services.creative_cache import CreativeCache
from .services.meta_graph_client import MetaGraphClient
from .services.tenant_directory import TenantDirectory
from .services.weekly_sync_service import WeeklySyncScheduler


class Settings(BaseSettings):
    """Application settings loaded from environment or .env.

    DATABASE_URL, TOKEN_ENCRYPTION_KEY, SENTRY_DSN and REDIS_URL are read straight
    from the environment by database.py, security.py, telemetry/ and the ARQ
    worker.
    """

    # Meta Graph API
    META_API_VERSION: str = "v24.0"
    META_GRAPH_TIMEOUT_SECONDS: float = 30.0
    META_MAX_RETRIES: int = 3
    # Client whose stored token is used for every Meta call (agency token)
    META_TOKEN_CLIENT_ID: Optional[str] = None

    # LeadConnector CRM
    CRM_BASE_URL: str = "https://services.leadconnectorhq.com"
    CRM_API_VERSION: str = "2021-07-28"
    CRM_TIMEOUT_SECONDS: float = 15.0

    # Weekly sync / creative cache
    SYNC_BATCH_SIZE: int = 10
    SNAPSHOT_STALE_AFTER_HOURS: int = 24
    CREATIVE_TTL_DAYS: int = 7
    AUTO_FETCH_CREATIVES: bool = False

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def build_graph_client(settings: Settings) -> MetaGraphClient:
    return MetaGraphClient(
        api_version=settings.META_API_VERSION,
        timeout=settings.META_GRAPH_TIMEOUT_SECONDS,
        max_retries=settings.META_MAX_RETRIES,
    )


def build_weekly_sync_scheduler(settings: Settings) -> WeeklySyncScheduler:
    """Scheduler wired to the real session factory; used by the API and the ARQ worker."""
    return WeeklySyncScheduler(
        session_factory=SessionLocal,
        graph=build_graph_client(settings),
        tenants=TenantDirectory(SessionLocal, token_client_id=settings.META_TOKEN_CLIENT_ID),
        batch_size=settings.SYNC_BATCH_SIZE,
        stale_after_hours=settings.SNAPSHOT_STALE_AFTER_HOURS,
        auto_fetch_creatives=settings.AUTO_FETCH_CREATIVES,
    )


def get_graph_client() -> MetaGraphClient:
    return build_graph_client(get_settings())


def get_tenant_directory() -> TenantDirectory:
    return TenantDirectory(SessionLocal, token_client_id=get_settings().META_TOKEN_CLIENT_ID)


@lru_cache()
def get_weekly_sync_scheduler() -> WeeklySyncScheduler:
    """Process-wide scheduler so the per-client in-flight guard is shared."""
    return build_weekly_sync_scheduler(get_settings())


def get_creative_cache(
    db: Session = Depends(get_db),
    graph: MetaGraphClient = Depends(get_graph_client),
) -> CreativeCache:
    return CreativeCache(db, graph, ttl_days=get_settings().CREATIVE_TTL_DAYS)
