"""Lead store.

WHAT:
    Reads, creates and updates CRM leads for the ad board and the CRM sync.

WHY:
    Amount fields are only meaningful for some statuses. Callers asking to
    set an amount the status does not allow get a ValidationError; every
    write then re-applies `enforce_amount_rules` (the ORM listeners do the
    same for writes that bypass this service).

REFERENCES:
    - adboard/models.py::Lead, enforce_amount_rules
    - adboard/services/lead_status_sync_service.py (status updates from CRM tags)
    - adboard/services/ad_performance_board.py (range reads)
"""

from __future__ import annotations

import logging
import math
from datetime import date
from typing import Any, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from adboard.errors import NotFoundError, ValidationError
from adboard.models import (
    JOB_BOOKED_AMOUNT_STATUSES,
    PROPOSAL_AMOUNT_STATUSES,
    Lead,
    LeadStatusEnum,
    enforce_amount_rules,
)
from adboard.utils.dates import parse_date, utcnow

logger = logging.getLogger(__name__)


# Fields update_lead accepts besides status / amounts
_EDITABLE_FIELDS = frozenset({
    "name",
    "email",
    "phone",
    "zip_code",
    "service",
    "ad_name",
    "ad_set_name",
    "lead_score",
    "notes",
})


def coerce_amount(value: Any) -> float:
    """Finite non-negative number, else 0."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


def _coerce_status(value: Any) -> LeadStatusEnum:
    try:
        return LeadStatusEnum(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown lead status '{value}'") from exc


def _check_amounts_allowed(
    status: LeadStatusEnum,
    proposal_amount: Any,
    job_booked_amount: Any,
) -> None:
    if proposal_amount is not None and status not in PROPOSAL_AMOUNT_STATUSES:
        raise ValidationError(f"proposal_amount cannot be set for status '{status.value}'")
    if job_booked_amount is not None and status not in JOB_BOOKED_AMOUNT_STATUSES:
        raise ValidationError(f"job_booked_amount cannot be set for status '{status.value}'")


class LeadService:
    def __init__(self, db: Session):
        self.db = db

    # --- reads -------------------------------------------------------------

    def get(self, lead_id: str) -> Lead:
        lead = self.db.get(Lead, lead_id)
        if lead is None or lead.is_deleted:
            raise NotFoundError(f"Lead {lead_id} not found")
        return lead

    def get_by_date_range(self, client_id: str, start: date, end: date) -> List[Lead]:
        return (
            self.db.query(Lead)
            .filter(
                Lead.client_id == client_id,
                Lead.lead_date >= start,
                Lead.lead_date <= end,
                Lead.is_deleted.is_(False),
            )
            .order_by(Lead.lead_date.asc())
            .all()
        )

    def find_for_sync(self, client_id: str, email: str) -> Optional[Lead]:
        """Most recent non-deleted lead of the client with this email (case-insensitive)."""
        if not email:
            return None
        return (
            self.db.query(Lead)
            .filter(
                Lead.client_id == client_id,
                func.lower(Lead.email) == email.strip().lower(),
                Lead.is_deleted.is_(False),
            )
            .order_by(Lead.lead_date.desc())
            .first()
        )

    # --- writes ------------------------------------------------------------

    def create_lead(self, client_id: str, lead_date, **fields) -> Lead:
        """Insert a lead. Requires service, zip code and a phone or email."""
        if not fields.get("service") or not fields.get("zip_code"):
            raise ValidationError("service and zip_code are required")
        if not fields.get("email") and not fields.get("phone"):
            raise ValidationError("at least one of email or phone is required")

        status = _coerce_status(fields.pop("status", LeadStatusEnum.new))
        proposal_amount = fields.pop("proposal_amount", None)
        job_booked_amount = fields.pop("job_booked_amount", None)
        _check_amounts_allowed(status, proposal_amount, job_booked_amount)

        unknown = set(fields) - _EDITABLE_FIELDS - {"unqualified_lead_reason"}
        if unknown:
            raise ValidationError(f"Unknown lead fields: {', '.join(sorted(unknown))}")

        lead = Lead(client_id=client_id, lead_date=parse_date(lead_date), status=status, **fields)
        lead.proposal_amount = coerce_amount(proposal_amount)
        lead.job_booked_amount = coerce_amount(job_booked_amount)
        enforce_amount_rules(lead)

        self.db.add(lead)
        self.db.commit()
        self.db.refresh(lead)
        return lead

    def update_status(
        self,
        lead: Lead,
        status,
        unqualified_reason: Optional[str] = None,
        proposal_amount: Any = None,
        job_booked_amount: Any = None,
    ) -> Lead:
        """Move a lead to `status`.

        Raises:
            ValidationError: Unknown status, or an amount the status does not allow
        """
        status = _coerce_status(status)
        _check_amounts_allowed(status, proposal_amount, job_booked_amount)

        lead.status = status
        lead.unqualified_lead_reason = unqualified_reason if status == LeadStatusEnum.unqualified else None
        if proposal_amount is not None:
            lead.proposal_amount = coerce_amount(proposal_amount)
        if job_booked_amount is not None:
            lead.job_booked_amount = coerce_amount(job_booked_amount)
        enforce_amount_rules(lead)

        self.db.commit()
        self.db.refresh(lead)
        return lead

    def update_lead(self, lead_id: str, **changes) -> Lead:
        """Partial update; status and amounts follow the same rules as update_status."""
        lead = self.get(lead_id)

        status = _coerce_status(changes.pop("status", lead.status))
        proposal_amount = changes.pop("proposal_amount", None)
        job_booked_amount = changes.pop("job_booked_amount", None)
        reason = changes.pop("unqualified_lead_reason", lead.unqualified_lead_reason)

        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown lead fields: {', '.join(sorted(unknown))}")
        _check_amounts_allowed(status, proposal_amount, job_booked_amount)

        for field, value in changes.items():
            setattr(lead, field, value)

        return self.update_status(
            lead,
            status,
            unqualified_reason=reason,
            proposal_amount=proposal_amount,
            job_booked_amount=job_booked_amount,
        )

    def soft_delete(self, lead_id: str) -> Lead:
        lead = self.get(lead_id)
        lead.is_deleted = True
        lead.deleted_at = utcnow()
        self.db.commit()
        logger.info("[LEADS] Soft-deleted lead %s", lead_id)
        return lead
