"""
End-to-end dialer flow
A full agent session against an in-memory database and the simulated carrier
"""
import asyncio
import pytest

from coastal_crm.domain.errors import InvalidStateError
from coastal_crm.domain.interfaces.telephony_provider import ProviderCallStatus
from coastal_crm.domain.models.call import CallStatus
from coastal_crm.domain.models.campaign import ContactStatus
from coastal_crm.domain.models.dialer_session import SessionStatus
from coastal_crm.domain.models.lead import LeadStatus
from coastal_crm.infrastructure.storage import models
from tests.conftest import get_row


class TestFullSession:

    @pytest.mark.asyncio
    async def test_three_contact_campaign(self, dialer, campaign, provider, session_factory):
        """Enroll A, no answer on B, then B and C come back in order and the campaign exhausts"""
        sessions, advancer, coordinator = dialer.sessions, dialer.advancer, dialer.coordinator
        a, b, c = campaign.contact_ids

        session = await sessions.start_session(campaign.id, "agent-1")

        # Contact A: answered, enrolled
        contact = await advancer.get_next_contact(session.id)
        assert contact.id == a
        placed = await coordinator.initiate_call(session.id, a)

        with pytest.raises(InvalidStateError):
            await coordinator.initiate_call(session.id, a)

        await provider.advance_call(placed.provider_call.sid, ProviderCallStatus.RINGING)
        await provider.advance_call(placed.provider_call.sid, ProviderCallStatus.IN_PROGRESS)
        await coordinator.end_call(placed.provider_call.sid)
        assert dialer.repository.get_call(placed.call_id).status == CallStatus.ENDED

        await coordinator.submit_disposition(placed.call_id, "ENROLLED", notes="Enrolled at $52k")

        assert get_row(session_factory, models.CampaignContact, a).status == ContactStatus.COMPLETED.value
        assert get_row(session_factory, models.Lead, campaign.lead_ids[0]).status == LeadStatus.ENROLLED.value

        # Contact B: no answer, goes back to the pool
        contact = await advancer.get_next_contact(session.id)
        assert contact.id == b
        placed = await coordinator.initiate_call(session.id, b)
        await provider.advance_call(placed.provider_call.sid, ProviderCallStatus.NO_ANSWER)
        await coordinator.submit_disposition(placed.call_id, "NO_ANSWER")

        b_row = get_row(session_factory, models.CampaignContact, b)
        assert b_row.status == ContactStatus.PENDING.value
        assert b_row.attempt_count == 1

        # C has fewer attempts than B, so it comes first
        assert (await advancer.get_next_contact(session.id)).id == c
        await advancer.skip_contact(session.id, c)
        assert (await advancer.get_next_contact(session.id)).id == b
        assert get_row(session_factory, models.CampaignContact, b).attempt_count == 2

        placed = await coordinator.initiate_call(session.id, b)
        await coordinator.submit_disposition(placed.call_id, "NOT_INTERESTED")

        # Nothing left to dial
        assert await advancer.get_next_contact(session.id) is None
        final = sessions.get_session(session.id)
        assert final.status == SessionStatus.STOPPED
        assert final.current_contact_id is None
        assert final.active_call_id is None
        assert final.stats.calls_made == 3
        assert final.stats.connected == 1
        assert final.stats.no_answer == 1
        assert final.stats.enrolled == 1

        # A stopped session stays put
        assert await advancer.get_next_contact(session.id) is None

        progress = dialer.get_campaign_progress(campaign.id)
        assert progress.by_status["COMPLETED"] == 2
        assert progress.by_status["SKIPPED"] == 1
        assert progress.remaining == 0

    @pytest.mark.asyncio
    async def test_stop_with_call_in_flight(self, dialer, campaign, provider):
        session = await dialer.sessions.start_session(campaign.id, "agent-1")
        contact = await dialer.advancer.get_next_contact(session.id)
        placed = await dialer.coordinator.initiate_call(session.id, contact.id)
        await provider.advance_call(placed.provider_call.sid, ProviderCallStatus.IN_PROGRESS)

        stopped = await dialer.sessions.stop_session(session.id)

        assert stopped.status == SessionStatus.STOPPED
        assert stopped.active_call_id == placed.call_id
        call = dialer.repository.get_call(placed.call_id)
        assert call.status == CallStatus.IN_PROGRESS
        assert call.ended_at is None
        assert (await provider.get_call_status(placed.provider_call.sid)).status == ProviderCallStatus.IN_PROGRESS

        # The agent can still wrap the call up
        await dialer.coordinator.end_call(placed.provider_call.sid)
        await dialer.coordinator.submit_disposition(placed.call_id, "CALLBACK")
        assert dialer.sessions.get_session(session.id).active_call_id is None

    @pytest.mark.asyncio
    async def test_sid_round_trip_until_disposition(self, dialer, campaign):
        session = await dialer.sessions.start_session(campaign.id, "agent-1")
        contact = await dialer.advancer.get_next_contact(session.id)
        placed = await dialer.coordinator.initiate_call(session.id, contact.id)
        sid = placed.provider_call.sid

        assert dialer.coordinator.get_call_id_from_sid(sid) == placed.call_id
        assert dialer.repository.get_call(placed.call_id).external_sid == sid

        await dialer.coordinator.submit_disposition(placed.call_id, "WRONG_NUMBER")

        assert dialer.coordinator.get_call_id_from_sid(sid) is None

    @pytest.mark.asyncio
    async def test_concurrent_initiates_place_one_call(self, dialer, campaign):
        session = await dialer.sessions.start_session(campaign.id, "agent-1")
        contact = await dialer.advancer.get_next_contact(session.id)

        results = await asyncio.gather(
            dialer.coordinator.initiate_call(session.id, contact.id),
            dialer.coordinator.initiate_call(session.id, contact.id),
            return_exceptions=True,
        )

        placed = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(placed) == 1
        assert len(rejected) == 1
        assert dialer.sessions.get_session(session.id).stats.calls_made == 1

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_contacts(self, dialer, campaign):
        first = await dialer.sessions.start_session(campaign.id, "agent-1")
        second = await dialer.sessions.start_session(campaign.id, "agent-2")

        contacts = await asyncio.gather(
            dialer.advancer.get_next_contact(first.id),
            dialer.advancer.get_next_contact(second.id),
        )

        assert contacts[0].id != contacts[1].id

    @pytest.mark.asyncio
    async def test_contact_claimed_by_other_session_is_not_dialed(self, dialer, campaign, session_factory):
        """A second session cannot call a contact the first one is dialing, so its disposition stands"""
        first = await dialer.sessions.start_session(campaign.id, "agent-1")
        second = await dialer.sessions.start_session(campaign.id, "agent-2")
        contact = await dialer.advancer.get_next_contact(first.id)
        placed = await dialer.coordinator.initiate_call(first.id, contact.id)

        with pytest.raises(InvalidStateError):
            await dialer.coordinator.initiate_call(second.id, contact.id)

        await dialer.coordinator.submit_disposition(placed.call_id, "ENROLLED")

        row = get_row(session_factory, models.CampaignContact, contact.id)
        assert row.status == ContactStatus.COMPLETED.value
        assert row.attempt_count == 1
        assert dialer.sessions.get_session(second.id).stats.calls_made == 0
        with session_factory() as db:
            assert db.query(models.Call).filter(models.Call.campaign_contact_id == contact.id).count() == 1
