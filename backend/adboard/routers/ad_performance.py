"""Ad Performance Board Router
=============================

WHAT:
    HTTP surface of the ad board: the report itself, an explicit weekly
    sync, and the creative cache.

WHY:
    Routers parse the request and map errors to status codes; the report
    math lives in AdPerformanceBoard and the Meta sync in
    WeeklySyncScheduler so the ARQ worker can reuse both.

ERROR MAPPING:
    ValidationError -> 400, NotFoundError -> 404, anything else -> 500

REFERENCES:
    - adboard/services/ad_performance_board.py
    - adboard/services/weekly_sync_service.py
    - adboard/services/creative_cache.py
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from adboard.database import get_db
from adboard.deps import get_creative_cache, get_tenant_directory, get_weekly_sync_scheduler
from adboard.errors import NotFoundError, ValidationError
from adboard.schemas import (
    CreativeOut,
    CreativeRefreshResponse,
    ReportRequest,
    ReportResponse,
    SyncRequest,
    SyncResponse,
)
from adboard.services.ad_performance_board import AdPerformanceBoard
from adboard.services.creative_cache import CreativeCache
from adboard.services.tenant_directory import TenantDirectory
from adboard.services.weekly_sync_service import WeeklySyncScheduler
from adboard.telemetry import capture_exception
from adboard.utils.dates import parse_date

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/ad-performance-board",
    tags=["Ad Performance Board"],
    responses={
        400: {"description": "Invalid filters, dates or columns"},
        404: {"description": "Not found"},
    },
)


def _to_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=ReportResponse)
async def get_ad_performance_board(
    request: ReportRequest,
    sync: bool = Query(True, description="Sync missing/stale weeks from Meta first"),
    wait_for_sync: bool = Query(False, description="Block until the sync finishes"),
    db: Session = Depends(get_db),
    scheduler: WeeklySyncScheduler = Depends(get_weekly_sync_scheduler),
) -> ReportResponse:
    """Report rows for one client, grouped by campaign, ad set or ad."""
    logger.info(
        "[AD_BOARD] Report requested: client=%s range=%s..%s group_by=%s sync=%s wait=%s",
        request.client_id, request.filters.start_date, request.filters.end_date,
        request.group_by.value, sync, wait_for_sync,
    )

    if sync:
        try:
            decision = await scheduler.ensure_weekly_data_exists(
                request.client_id,
                request.filters.start_date,
                request.filters.end_date,
                wait_for_sync=wait_for_sync,
            )
            logger.info("[AD_BOARD] Sync decision for client %s: %s", request.client_id, decision.value)
        except ValidationError as e:
            raise _to_http_error(e) from e
        except Exception as e:
            # A failed freshness check still serves whatever is stored
            logger.exception("[AD_BOARD] Sync check failed for client %s", request.client_id)
            capture_exception(e, extra={"client_id": request.client_id})

    try:
        return await asyncio.to_thread(AdPerformanceBoard(db).generate, request)
    except Exception as e:
        if not isinstance(e, (ValidationError, NotFoundError)):
            logger.exception("[AD_BOARD] Report failed for client %s", request.client_id)
            capture_exception(e, extra={"client_id": request.client_id})
        raise _to_http_error(e) from e


@router.post("/sync", response_model=SyncResponse)
async def sync_weekly_data(
    request: SyncRequest,
    scheduler: WeeklySyncScheduler = Depends(get_weekly_sync_scheduler),
) -> SyncResponse:
    """Blocking weekly sync for a range; returns what the scheduler decided."""
    try:
        decision = await scheduler.ensure_weekly_data_exists(
            request.client_id, request.start_date, request.end_date, wait_for_sync=True,
        )
    except ValidationError as e:
        raise _to_http_error(e) from e
    return SyncResponse(client_id=request.client_id, decision=decision.value)


@router.post("/creatives/refresh", response_model=CreativeRefreshResponse)
async def refresh_creatives(
    request: SyncRequest,
    cache: CreativeCache = Depends(get_creative_cache),
    tenants: TenantDirectory = Depends(get_tenant_directory),
) -> CreativeRefreshResponse:
    """Refetch every creative referenced by the client's snapshots in range."""
    try:
        start, end = parse_date(request.start_date), parse_date(request.end_date)
        access_token = await tenants.get_access_token(request.client_id)
        if not access_token:
            raise NotFoundError(f"No Meta access token available for client {request.client_id}")
        summary = await cache.fetch_and_save_for_client(request.client_id, start, end, access_token)
    except (ValidationError, NotFoundError) as e:
        raise _to_http_error(e) from e

    logger.info(
        "[CREATIVE_CACHE] Refresh for client %s: %d saved, %d failed",
        request.client_id, summary["saved"], summary["failed"],
    )
    return CreativeRefreshResponse(**summary)


@router.get("/creatives/{creative_id}", response_model=CreativeOut)
async def get_creative(
    creative_id: str,
    client_id: str = Query(..., alias="clientId"),
    cache: CreativeCache = Depends(get_creative_cache),
    tenants: TenantDirectory = Depends(get_tenant_directory),
) -> CreativeOut:
    """Cached creative; refetched from Meta when missing or older than the TTL."""
    access_token = await tenants.get_access_token(client_id)
    if access_token:
        record = await cache.get(creative_id, client_id, access_token)
    else:
        record = await asyncio.to_thread(cache.get_cached, creative_id)

    if record is None or (record.client_id and record.client_id != client_id):
        raise _to_http_error(NotFoundError(f"Creative {creative_id} not found"))
    return CreativeOut.model_validate(record)
