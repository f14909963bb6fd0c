"""LeadConnector (GHL) CRM REST client.

WHAT:
    Async client for the two CRM endpoints the lead-status sync needs:
    - GET /opportunities/search?location_id=...  (paged via meta.nextPageUrl)
    - GET /contacts/{id}                         (custom field amounts)

WHY:
    Opportunity tags drive lead statuses and the estimate amount lives in a
    contact custom field. The CRM rate limits bursts per location, so
    429/5xx/network failures are retried with exponential backoff plus jitter.

REFERENCES:
    - https://highlevel.stoplight.io/docs/integrations
    - adboard/services/lead_status_sync_service.py (caller)
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from adboard.errors import AuthError, TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_URL = "https://services.leadconnectorhq.com"
DEFAULT_API_VERSION = "2021-07-28"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
OPPORTUNITY_PAGE_LIMIT = 100
MAX_OPPORTUNITY_PAGES = 500


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = DEFAULT_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    retry_on: tuple = (TransientUpstreamError,),
) -> T:
    """Call `fn` until it succeeds or `retries` retries are used up.

    Delay before retry N (1-based) is base_delay * 2^(N-1) plus up to half
    of that again as jitter. Exceptions outside `retry_on` propagate at once.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as e:
            attempt += 1
            if attempt > retries:
                raise
            backoff = base_delay * (2 ** (attempt - 1))
            delay = backoff + random.uniform(0, backoff / 2)
            logger.warning("[CRM_CLIENT] Retry %d/%d in %.2fs: %s", attempt, retries, delay, e)
            await sleep(delay)


class CrmClient:
    """Per-location CRM client.

    Usage:
        ```python
        client = CrmClient(api_token="pit-...")
        opportunities = await client.search_opportunities("loc_123")
        ```
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retries: int = DEFAULT_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not api_token:
            raise AuthError("CRM API token is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.base_delay = base_delay
        self._sleep = sleep
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Version": api_version,
            "Accept": "application/json",
        }

    async def _get_once(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers,
                transport=self._transport,
            ) as client:
                response = await client.get(url, params=params)
        except httpx.RequestError as e:
            raise TransientUpstreamError(f"Network error calling CRM {url}: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientUpstreamError(f"CRM {url} returned HTTP {status}", status=status, body=response.text)
        if status == 401:
            raise AuthError(f"CRM rejected the API token for {url}")
        if status >= 400:
            logger.error("[CRM_CLIENT] HTTP %d on %s: %s", status, url, response.text[:500])
            raise UpstreamError(f"CRM {url} returned HTTP {status}", status=status, body=response.text)

        return response.json()

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET with retry on 429/5xx/network errors."""
        return await with_retry(
            lambda: self._get_once(url, params),
            retries=self.retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    async def search_opportunities(
        self,
        location_id: str,
        pipeline_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Every opportunity of the location, following meta.nextPageUrl."""
        params: Optional[Dict[str, Any]] = {"location_id": location_id, "limit": OPPORTUNITY_PAGE_LIMIT}
        if pipeline_id:
            params["pipeline_id"] = pipeline_id

        url = "/opportunities/search"
        opportunities: List[Dict[str, Any]] = []
        for _ in range(MAX_OPPORTUNITY_PAGES):
            page = await self.get(url, params)
            opportunities.extend(page.get("opportunities") or [])

            next_url = (page.get("meta") or {}).get("nextPageUrl")
            if not next_url:
                break
            # nextPageUrl already carries the query string
            url, params = next_url, None
        else:
            logger.warning("[CRM_CLIENT] Stopped paging opportunities for %s", location_id)

        logger.info("[CRM_CLIENT] Fetched %d opportunities for location %s", len(opportunities), location_id)
        return opportunities

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        data = await self.get(f"/contacts/{contact_id}")
        return data.get("contact") or {}

    async def get_custom_field_amount(self, contact_id: str, field_id: str) -> Optional[float]:
        """Numeric value of a contact custom field, or None when unset/non-numeric."""
        contact = await self.get_contact(contact_id)
        for custom_field in contact.get("customFields") or []:
            if custom_field.get("id") != field_id:
                continue
            value = custom_field.get("value")
            if value is None or value == "":
                return None
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
        return None
