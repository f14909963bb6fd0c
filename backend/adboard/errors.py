"""Domain error taxonomy.

WHAT:
    Typed failures shared by the Graph client, CRM client, sync services and
    the report engine.

WHY:
    Routers and workers map these to HTTP statuses / job results without
    inspecting provider-specific exceptions (FacebookRequestError, httpx).

REFERENCES:
    - adboard/services/meta_graph_client.py (raises Auth/Upstream/Transient)
    - adboard/routers/ad_performance.py (maps to 400/404/500)
"""

from __future__ import annotations

from typing import Any, Optional


class AdboardError(Exception):
    """Base exception for adboard errors."""
    pass


class AuthError(AdboardError):
    """Raised when an access token is missing, expired or rejected."""
    pass


class UpstreamError(AdboardError):
    """Raised for a non-retryable HTTP failure from an external API."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class TransientUpstreamError(UpstreamError):
    """Raised once a rate-limited / transient failure has exhausted its retries."""
    pass


class NotFoundError(AdboardError):
    """Raised when a referenced tenant, ad account, token or lead does not exist."""
    pass


class ValidationError(AdboardError):
    """Raised for malformed dates, filters, columns or disallowed lead amounts."""
    pass
