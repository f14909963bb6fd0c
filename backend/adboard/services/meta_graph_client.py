"""Meta Graph API accessor.

WHAT:
    Thin async wrapper around `FacebookAdsApi.call` for raw Graph reads
    (`GET /{path}?fields=...`). Injects the access token per call, retries
    rate-limited / transient failures with exponential backoff and translates
    `FacebookRequestError` into adboard's error taxonomy.

WHY:
    - Insights, ad lookups, lead forms, creatives and video details all share
      the same retry/error policy, so they go through one accessor
    - The token differs per tenant, so each call builds its own
      FacebookSession instead of relying on the SDK's global default API
    - The SDK is blocking (requests); calls run in a worker thread so several
      weeks/creatives can be fetched concurrently from asyncio

RETRY POLICY:
    - HTTP 429 or Graph throttling codes (4, 17, 32, 613, 80000-80099): retry
    - error.is_transient == true: retry
    - network errors (timeouts, resets): retry
    - HTTP 401 / code 190: AuthError, no retry
    - anything else: UpstreamError, no retry
    Delay before retry N (0-based) is 2^N seconds; after the last attempt the
    failure surfaces as TransientUpstreamError.

REFERENCES:
    - https://developers.facebook.com/docs/graph-api/overview/rate-limiting
    - adboard/services/meta_insights_service.py (insights / ads / lead forms)
    - adboard/services/creative_cache.py (creatives / video details)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError
from facebook_business.session import FacebookSession
from requests.exceptions import RequestException

from adboard.errors import AuthError, TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)


DEFAULT_API_VERSION = "v24.0"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3

RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613})
BUSINESS_USE_CASE_CODES = range(80000, 80100)
AUTH_ERROR_CODES = frozenset({190})


def _split_path(path: str) -> Tuple[str, ...]:
    """'/act_1/insights' -> ('act_1', 'insights'); '/' -> ()."""
    return tuple(part for part in path.strip("/").split("/") if part)


def is_rate_limited(error: FacebookRequestError) -> bool:
    code = error.api_error_code()
    return (
        error.http_status() == 429
        or code in RATE_LIMIT_ERROR_CODES
        or (code is not None and code in BUSINESS_USE_CASE_CODES)
    )


def is_auth_failure(error: FacebookRequestError) -> bool:
    return error.http_status() == 401 or error.api_error_code() in AUTH_ERROR_CODES


class MetaGraphClient:
    """Async Graph API reader shared by every Meta-facing service.

    Usage:
        ```python
        client = MetaGraphClient(api_version="v24.0")
        page = await client.fetch_page("/act_123/insights", {"level": "ad"}, token)
        rows = await client.fetch_all("/act_123/insights", params, token)
        ```
    """

    def __init__(
        self,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.api_version = api_version
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    def _call(self, path: str, params: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        session = FacebookSession(access_token=access_token, timeout=self.timeout)
        api = FacebookAdsApi(session, api_version=self.api_version)
        response = api.call("GET", _split_path(path), params=params)
        return response.json()

    async def fetch_page(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """GET one Graph response.

        Args:
            path: Graph path, e.g. "/act_123/insights" or "/" for `ids=` lookups
            params: Query parameters (fields, time_range, ids, limit, ...)
            access_token: Tenant's Meta access token

        Returns:
            Parsed JSON body

        Raises:
            AuthError: Token missing or rejected
            UpstreamError: Non-retryable Graph failure
            TransientUpstreamError: Retryable failure that outlived all attempts
        """
        if not access_token:
            raise AuthError("Meta access token is required")

        params = dict(params or {})
        last_error: Optional[TransientUpstreamError] = None
        last_cause: Optional[BaseException] = None

        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.to_thread(self._call, path, params, access_token)

            except FacebookRequestError as e:
                status = e.http_status()
                code = e.api_error_code()
                message = e.api_error_message() or str(e)

                if is_auth_failure(e):
                    logger.error("[META_GRAPH] Auth failure on %s: HTTP %s code %s", path, status, code)
                    raise AuthError(f"Meta rejected the access token while fetching {path}: {message}") from e

                if not (is_rate_limited(e) or e.api_transient_error()):
                    logger.error(
                        "[META_GRAPH] API error on %s: HTTP %s, Code %s, Message: %s",
                        path, status, code, message,
                    )
                    raise UpstreamError(
                        f"Graph API error while fetching {path}: HTTP {status}, {message}",
                        status=status,
                        body=e.body(),
                    ) from e

                last_error = TransientUpstreamError(
                    f"Graph API still throttled/transient after {attempt + 1} attempts on {path}: {message}",
                    status=status,
                    body=e.body(),
                )
                last_cause = e

            except RequestException as e:
                last_error = TransientUpstreamError(f"Network error while fetching {path}: {e}")
                last_cause = e

            if attempt < self.max_retries:
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "[META_GRAPH] Retryable failure on %s (attempt %d/%d), retrying in %.1fs",
                    path, attempt + 1, self.max_retries + 1, delay,
                )
                await self._sleep(delay)

        raise last_error from last_cause

    async def fetch_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
        max_pages: int = 100,
    ) -> List[Dict[str, Any]]:
        """Follow cursor pagination and return the concatenated `data` lists."""
        params = dict(params or {})
        items: List[Dict[str, Any]] = []

        for _ in range(max_pages):
            page = await self.fetch_page(path, params, access_token)
            items.extend(page.get("data") or [])

            paging = page.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                break
            params["after"] = after
        else:
            logger.warning("[META_GRAPH] Stopped paging %s after %d pages", path, max_pages)

        return items
