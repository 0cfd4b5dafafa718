"""
Unit Tests for the Dialer Repository
"""
import pytest

from coastal_crm.domain.errors import CallNotFoundError, ContactNotFoundError, InvalidStateError
from coastal_crm.domain.models.call import CallStatus
from coastal_crm.domain.models.campaign import CampaignStatus, ContactStatus
from coastal_crm.domain.models.disposition import DispositionPolicy
from coastal_crm.infrastructure.storage import models
from coastal_crm.infrastructure.storage.database import session_scope
from tests.conftest import seed_campaign


class TestCampaignQueries:

    def test_get_campaign(self, repository, campaign):
        loaded = repository.get_campaign(campaign.id)
        assert loaded.status == CampaignStatus.ACTIVE
        assert loaded.name == "Q3 Restaurant Outreach"

    def test_get_missing_campaign(self, repository):
        assert repository.get_campaign("missing") is None

    def test_progress_counts_every_status(self, repository, campaign):
        repository.claim_next_contact(campaign.id, max_attempts=3)
        repository.set_contact_status(campaign.contact_ids[2], ContactStatus.SKIPPED)

        progress = repository.get_campaign_progress(campaign.id)

        assert progress.total == 3
        assert progress.by_status == {
            "PENDING": 1,
            "DIALING": 1,
            "COMPLETED": 0,
            "FAILED": 0,
            "SKIPPED": 1,
        }
        assert progress.remaining == 1

    def test_progress_ignores_other_campaigns(self, repository, session_factory, campaign):
        seed_campaign(session_factory, contacts=5, name="Other")
        assert repository.get_campaign_progress(campaign.id).total == 3


class TestContacts:

    def test_claim_returns_dialer_projection(self, repository, campaign):
        contact = repository.claim_next_contact(campaign.id, max_attempts=3)

        assert contact.id == campaign.contact_ids[0]
        assert contact.lead_id == campaign.lead_ids[0]
        assert contact.contact_name == "Owner 1"
        assert contact.total_debt_est == 45000.0
        assert contact.industry == "Restaurant"
        assert contact.score == 70

    def test_claim_ignores_inactive_statuses(self, repository, session_factory):
        single = seed_campaign(session_factory, contacts=1)
        repository.set_contact_status(single.contact_ids[0], ContactStatus.COMPLETED)

        assert repository.claim_next_contact(single.id, max_attempts=3) is None

    def test_set_status_of_missing_contact(self, repository):
        with pytest.raises(ContactNotFoundError):
            repository.set_contact_status("missing", ContactStatus.SKIPPED)


class TestCalls:

    def _call(self, repository, campaign):
        contact = repository.claim_next_contact(campaign.id, max_attempts=3)
        return repository.create_call(contact.id, "agent-1", contact.phone, "sim-call-abc")

    def test_create_call_links_contact(self, repository, campaign):
        call = self._call(repository, campaign)

        assert call.campaign_id == campaign.id
        assert call.lead_id == campaign.lead_ids[0]
        assert call.status == CallStatus.INITIATED
        assert call.started_at is not None

    def test_update_finalized_call_rejected(self, repository, campaign):
        call = self._call(repository, campaign)
        repository.finalize_call(call.id, "ENROLLED", None, DispositionPolicy())

        with pytest.raises(InvalidStateError):
            repository.update_call(call.id, status=CallStatus.ENDED)

    def test_open_call_until_disposition(self, repository, campaign):
        assert repository.has_open_call(campaign.contact_ids[0]) is False

        call = self._call(repository, campaign)
        assert repository.has_open_call(campaign.contact_ids[0]) is True

        repository.finalize_call(call.id, "NO_ANSWER", None, DispositionPolicy())
        assert repository.has_open_call(campaign.contact_ids[0]) is False

    def test_update_missing_call(self, repository):
        with pytest.raises(CallNotFoundError):
            repository.update_call("missing", status=CallStatus.RINGING)

    def test_finalize_falls_back_to_campaign_and_lead(self, repository, session_factory, campaign):
        call = self._call(repository, campaign)
        with session_scope(session_factory) as db:
            db.get(models.Call, call.id).campaign_contact_id = None

        result = repository.finalize_call(call.id, "DNC", "Asked not to call", DispositionPolicy())

        assert result["contact"].id == campaign.contact_ids[0]
        assert result["contact"].status == ContactStatus.COMPLETED
