"""Tests for LeadService and the lead amount rules.

WHAT:
    Creation validation, status updates, amount rules, sync lookup and
    soft delete.

WHY:
    Funnel costs and revenue on the board come straight from lead statuses
    and amounts; an amount on the wrong status silently inflates revenue.

REFERENCES:
    - adboard/services/lead_service.py (module under test)
    - adboard/models.py::enforce_amount_rules
"""

from datetime import date

import pytest

from adboard.errors import NotFoundError, ValidationError
from adboard.models import Lead, LeadStatusEnum
from adboard.services.lead_service import LeadService, coerce_amount


@pytest.fixture
def service(test_db_session):
    return LeadService(test_db_session)


@pytest.fixture
def lead(service):
    return service.create_lead(
        "client-1", "2025-01-08", service="Roofing", zip_code="75001", email="Jane@Example.com", ad_name="Ad One",
    )


class TestCreateLead:
    def test_defaults_to_new_with_zero_amounts(self, lead):
        assert lead.status == LeadStatusEnum.new
        assert lead.proposal_amount == 0
        assert lead.job_booked_amount == 0
        assert lead.lead_date == date(2025, 1, 8)

    def test_requires_service_and_zip(self, service):
        with pytest.raises(ValidationError):
            service.create_lead("client-1", "2025-01-08", zip_code="75001", email="a@b.c")

    def test_requires_email_or_phone(self, service):
        with pytest.raises(ValidationError):
            service.create_lead("client-1", "2025-01-08", service="Roofing", zip_code="75001")

    def test_rejects_amount_for_status_that_disallows_it(self, service):
        with pytest.raises(ValidationError):
            service.create_lead(
                "client-1", "2025-01-08", service="Roofing", zip_code="75001", phone="555",
                status="new", job_booked_amount=100,
            )


class TestUpdateStatus:
    def test_job_booked_keeps_amount(self, service, lead):
        service.update_status(lead, "job_booked", job_booked_amount=1500)

        assert lead.status == LeadStatusEnum.job_booked
        assert lead.job_booked_amount == 1500

    def test_leaving_job_booked_zeroes_booked_amount(self, service, lead):
        """WHAT: status != job_booked implies job_booked_amount == 0 after every update."""
        service.update_status(lead, "job_booked", job_booked_amount=1500)
        service.update_status(lead, LeadStatusEnum.in_progress)

        assert lead.job_booked_amount == 0

    def test_proposal_amount_only_on_allowed_statuses(self, service, lead):
        service.update_status(lead, "estimate_set", proposal_amount=800)
        assert lead.proposal_amount == 800

        service.update_status(lead, "job_lost")
        assert lead.proposal_amount == 800

        service.update_status(lead, "unqualified", unqualified_reason="dq - out of area")
        assert lead.proposal_amount == 0
        assert lead.unqualified_lead_reason == "dq - out of area"

    def test_disallowed_amount_raises(self, service, lead):
        with pytest.raises(ValidationError):
            service.update_status(lead, "new", proposal_amount=10)

    def test_unknown_status_raises(self, service, lead):
        with pytest.raises(ValidationError):
            service.update_status(lead, "won_big")

    def test_reason_cleared_when_no_longer_unqualified(self, service, lead):
        service.update_status(lead, "unqualified", unqualified_reason="dq - job too small")
        service.update_status(lead, "estimate_set")

        assert lead.unqualified_lead_reason is None

    def test_negative_or_garbage_amounts_become_zero(self):
        assert coerce_amount(-5) == 0
        assert coerce_amount("abc") == 0
        assert coerce_amount(float("inf")) == 0
        assert coerce_amount("12.5") == 12.5


class TestOrmGuard:
    def test_direct_write_is_normalized_by_listener(self, test_db_session):
        """WHAT: Writes that bypass LeadService still get amounts zeroed."""
        lead = Lead(
            client_id="client-1",
            lead_date=date(2025, 1, 8),
            status=LeadStatusEnum.new,
            proposal_amount=500,
            job_booked_amount=900,
        )
        test_db_session.add(lead)
        test_db_session.commit()

        assert lead.proposal_amount == 0
        assert lead.job_booked_amount == 0


class TestReadsAndDeletes:
    def test_find_for_sync_is_case_insensitive(self, service, lead):
        assert service.find_for_sync("client-1", "  jane@example.COM ").id == lead.id
        assert service.find_for_sync("client-2", "jane@example.com") is None

    def test_update_lead_changes_fields_and_status(self, service, lead):
        updated = service.update_lead(lead.id, service="Siding", status="job_booked", job_booked_amount=300)

        assert updated.service == "Siding"
        assert updated.job_booked_amount == 300

    def test_update_lead_rejects_unknown_fields(self, service, lead):
        with pytest.raises(ValidationError):
            service.update_lead(lead.id, client_id="other")

    def test_soft_deleted_lead_is_hidden(self, service, lead):
        service.soft_delete(lead.id)

        assert service.get_by_date_range("client-1", date(2025, 1, 1), date(2025, 1, 31)) == []
        with pytest.raises(NotFoundError):
            service.get(lead.id)
