"""
Telemetry Module
================

Error tracking for the ad board backend.

Components:
- sentry.py: Error tracking for API requests, background syncs and ARQ jobs

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)

Usage:
    from adboard.telemetry import init_observability, capture_exception

    init_observability()  # once, on app / worker startup

Related modules:
- adboard/main.py: Initializes observability on startup
- adboard/services/weekly_sync_service.py: captures fire-and-forget sync failures
- adboard/workers/arq_worker.py: captures job failures
"""

from adboard.telemetry.sentry import (
    init_sentry,
    capture_exception,
    capture_message,
)


def init_observability() -> dict:
    """Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization, e.g. {"sentry": False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
    "capture_message",
]
