"""Lead Status Sync Service - CRM tags -> lead statuses.

WHAT:
    For every active CRM connection, pulls the location's opportunities,
    classifies each by its tags and updates the matching lead (by email).
    When a lead moves into `estimate_set`, the estimate amount is read from
    the contact custom field configured on the connection.

WHY:
    Lead statuses drive the funnel columns of the ad board (estimate set
    rate, cost per estimate). Staff update the CRM, not the board, so the
    board catches up once a day (04:00 UTC cron in the ARQ worker).

REFERENCES:
    - adboard/services/lead_classification.py::classify
    - adboard/services/crm_client.py::CrmClient
    - adboard/workers/arq_worker.py::scheduled_lead_status_sync
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.orm import Session

from adboard.models import CrmConnection, LeadStatusEnum
from adboard.security import decrypt_secret
from adboard.services.crm_client import CrmClient, with_retry
from adboard.services.lead_classification import classify, collect_tags
from adboard.services.lead_service import LeadService, coerce_amount
from adboard.telemetry import capture_exception
from adboard.utils.dates import utcnow

logger = logging.getLogger(__name__)


CONNECTION_SPACING_SECONDS = 1.0


@dataclass
class LeadSyncStats:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class LeadStatusSyncService:
    """Runs the CRM -> lead status sync.

    `client_factory` builds a CrmClient from a decrypted API token; tests
    pass one wired to an httpx.MockTransport.
    """

    # One run per process at a time; checked and set before the first await
    _running = False

    def __init__(
        self,
        db: Session,
        client_factory: Callable[[str], CrmClient] = CrmClient,
        spacing_seconds: float = CONNECTION_SPACING_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.db = db
        self.leads = LeadService(db)
        self.client_factory = client_factory
        self.spacing_seconds = spacing_seconds
        self._sleep = sleep

    async def sync_connection(self, connection: CrmConnection) -> LeadSyncStats:
        """Classify and apply every opportunity of one CRM location."""
        stats = LeadSyncStats()
        token = decrypt_secret(connection.api_token_enc, context=f"crm:{connection.location_id}")
        client = self.client_factory(token)

        opportunities = await client.search_opportunities(connection.location_id, connection.pipeline_id)
        logger.info(
            "[LEAD_SYNC] Location %s: %d opportunities for client %s",
            connection.location_id, len(opportunities), connection.client_id,
        )

        for opportunity in opportunities:
            stats.processed += 1
            try:
                if self._is_out_of_scope(connection, opportunity):
                    stats.skipped += 1
                    continue
                await self._apply_opportunity(client, connection, opportunity, stats)
            except Exception as e:
                self.db.rollback()
                stats.errors += 1
                logger.warning(
                    "[LEAD_SYNC] Opportunity %s failed: %s", opportunity.get("id"), e,
                )

        connection.last_synced_at = utcnow()
        self.db.commit()

        logger.info(
            "[LEAD_SYNC] Location %s done: processed=%d updated=%d skipped=%d errors=%d",
            connection.location_id, stats.processed, stats.updated, stats.skipped, stats.errors,
        )
        return stats

    @staticmethod
    def _is_out_of_scope(connection: CrmConnection, opportunity: Dict[str, Any]) -> bool:
        """Other pipeline, or no contact email to match a lead on."""
        pipeline_id = opportunity.get("pipelineId")
        if connection.pipeline_id and pipeline_id and pipeline_id != connection.pipeline_id:
            return True
        return not (opportunity.get("contact") or {}).get("email")

    async def _apply_opportunity(
        self,
        client: CrmClient,
        connection: CrmConnection,
        opportunity: Dict[str, Any],
        stats: LeadSyncStats,
    ) -> None:
        contact = opportunity.get("contact") or {}

        classification = classify(collect_tags(opportunity))
        if classification is None:
            stats.skipped += 1
            return

        lead = self.leads.find_for_sync(connection.client_id, contact["email"])
        if lead is None or not lead.service or not lead.zip_code:
            stats.skipped += 1
            return

        current_status = LeadStatusEnum(lead.status)
        if (
            current_status == classification.status
            and (lead.unqualified_lead_reason or None) == classification.unqualified_reason
        ):
            stats.skipped += 1
            return

        proposal_amount = None
        contact_id = opportunity.get("contactId") or contact.get("id")
        if (
            classification.status == LeadStatusEnum.estimate_set
            and connection.amount_custom_field_id
            and contact_id
        ):
            amount = await client.get_custom_field_amount(contact_id, connection.amount_custom_field_id)
            proposal_amount = coerce_amount(amount) if amount is not None else None

        self.leads.update_status(
            lead,
            classification.status,
            unqualified_reason=classification.unqualified_reason,
            proposal_amount=proposal_amount,
        )
        stats.updated += 1
        logger.debug(
            "[LEAD_SYNC] Lead %s: %s -> %s", lead.id, current_status.value, classification.status.value,
        )

    async def sync_all_connections(self) -> Optional[Dict[str, Dict[str, Any]]]:
        """Sync every active connection, one after another.

        Returns:
            {connection_id: stats} or None when another run is in flight
        """
        cls = type(self)
        if cls._running:
            logger.warning("[LEAD_SYNC] Sync already running; skipping this run")
            return None
        cls._running = True

        try:
            connections = (
                self.db.query(CrmConnection)
                .filter(CrmConnection.is_active.is_(True))
                .order_by(CrmConnection.created_at.asc())
                .all()
            )
            logger.info("[LEAD_SYNC] Syncing %d active CRM connections", len(connections))

            results: Dict[str, Dict[str, Any]] = {}
            for index, connection in enumerate(connections):
                if index:
                    await self._sleep(self.spacing_seconds)
                try:
                    stats = await with_retry(
                        lambda: self.sync_connection(connection),
                        base_delay=self.spacing_seconds,
                        sleep=self._sleep,
                    )
                    results[connection.id] = stats.as_dict()
                except Exception as e:
                    self.db.rollback()
                    logger.exception("[LEAD_SYNC] Connection %s failed", connection.location_id)
                    capture_exception(e, extra={
                        "connection_id": connection.id,
                        "location_id": connection.location_id,
                        "client_id": connection.client_id,
                    })
                    results[connection.id] = {"error": str(e)}
            return results
        finally:
            cls._running = False

    @classmethod
    def is_running(cls) -> bool:
        return cls._running
