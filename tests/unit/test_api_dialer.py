"""
Tests for the Dialer API Endpoints
Status code mapping, auth and request validation
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from unittest.mock import MagicMock

from fastapi import HTTPException

from coastal_crm.api.v1.dependencies import (
    CurrentUser,
    get_current_user,
    get_dialer_engine,
    get_supabase,
)
from coastal_crm.api.v1.endpoints.dialer import to_http_exception
from coastal_crm.domain.errors import (
    CallNotFoundError,
    DialerError,
    InvalidStateError,
    TelephonyError,
    ValidationError,
)
from coastal_crm.main import app
from tests.conftest import seed_campaign


AGENT = CurrentUser(id="agent-1", email="agent@coastal-crm.dev")
OTHER_AGENT = CurrentUser(id="agent-2", email="closer@coastal-crm.dev")


@pytest_asyncio.fixture
async def client(dialer):
    app.dependency_overrides[get_current_user] = lambda: AGENT
    app.dependency_overrides[get_dialer_engine] = lambda: dialer

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


class TestErrorMapping:

    @pytest.mark.parametrize("error,expected", [
        (CallNotFoundError("call-1"), 404),
        (InvalidStateError("busy"), 409),
        (ValidationError("bad"), 400),
        (TelephonyError("carrier down", provider="vonage"), 502),
        (DialerError("unexpected"), 500),
    ])
    def test_status_codes(self, error, expected):
        exc = to_http_exception(error)
        assert isinstance(exc, HTTPException)
        assert exc.status_code == expected
        assert exc.detail == error.to_dict()


class TestAuth:

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, dialer):
        app.dependency_overrides[get_supabase] = lambda: MagicMock()
        app.dependency_overrides[get_dialer_engine] = lambda: dialer
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as http:
                response = await http.post("/api/v1/dialer/start", json={"campaign_id": "c-1"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejected_token_is_401(self, dialer):
        supabase = MagicMock()
        supabase.auth.get_user.side_effect = Exception("JWT expired")
        app.dependency_overrides[get_supabase] = lambda: supabase
        app.dependency_overrides[get_dialer_engine] = lambda: dialer
        try:
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as http:
                response = await http.get(
                    "/api/v1/dialer/session",
                    params={"session_id": "ds-x"},
                    headers={"Authorization": "Bearer expired-token"},
                )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401


class TestSessionEndpoints:

    @pytest.mark.asyncio
    async def test_start_returns_session_and_first_contact(self, client, campaign):
        response = await client.post("/api/v1/dialer/start", json={"campaign_id": campaign.id})

        assert response.status_code == 200
        data = response.json()
        assert data["session"]["status"] == "active"
        assert data["session"]["agent_id"] == "agent-1"
        assert data["contact"]["id"] == campaign.contact_ids[0]
        assert data["session"]["current_contact_id"] == campaign.contact_ids[0]
        assert data["exhausted"] is False

    @pytest.mark.asyncio
    async def test_start_unknown_campaign_is_404(self, client):
        response = await client.post("/api/v1/dialer/start", json={"campaign_id": "missing"})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "invalid_campaign"

    @pytest.mark.asyncio
    async def test_start_requires_campaign_id(self, client):
        response = await client.post("/api/v1/dialer/start", json={})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_session_of_other_agent_is_hidden(self, client, dialer, campaign):
        other = await dialer.sessions.start_session(campaign.id, "agent-2")

        response = await client.get("/api/v1/dialer/session", params={"session_id": other.id})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "session_not_found"

    @pytest.mark.asyncio
    async def test_stop(self, client, campaign):
        started = (await client.post("/api/v1/dialer/start", json={"campaign_id": campaign.id})).json()

        response = await client.post("/api/v1/dialer/stop", json={"session_id": started["session"]["id"]})

        assert response.status_code == 200
        assert response.json()["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_stop_unknown_session_is_404(self, client):
        response = await client.post("/api/v1/dialer/stop", json={"session_id": "ds-doesnotexist0000"})
        assert response.status_code == 404


class TestCallEndpoints:

    async def _start(self, client, campaign):
        data = (await client.post("/api/v1/dialer/start", json={"campaign_id": campaign.id})).json()
        return data["session"]["id"], data["contact"]["id"]

    @pytest.mark.asyncio
    async def test_double_initiate_is_409(self, client, campaign):
        session_id, contact_id = await self._start(client, campaign)
        body = {"session_id": session_id, "contact_id": contact_id}

        first = await client.post("/api/v1/dialer/call", json=body)
        second = await client.post("/api/v1/dialer/call", json=body)

        assert first.status_code == 200
        assert first.json()["status"] == "initiated"
        assert second.status_code == 409
        assert second.json()["detail"]["error"] == "invalid_state"

    @pytest.mark.asyncio
    async def test_provider_failure_is_502(self, client, dialer, session_factory, provider):
        rejected = seed_campaign(session_factory, contacts=1)
        provider._reject_numbers.add(rejected.phones[0])
        session_id, contact_id = await self._start(client, rejected)

        response = await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )

        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "telephony_error"

    @pytest.mark.asyncio
    async def test_unknown_disposition_is_400(self, client, campaign):
        session_id, contact_id = await self._start(client, campaign)
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )).json()

        response = await client.post(
            "/api/v1/dialer/disposition",
            json={"call_id": call["call_id"], "disposition": "HUNG_UP"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_sid_lookup_and_status(self, client, campaign):
        session_id, contact_id = await self._start(client, campaign)
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )).json()

        by_sid = await client.get(f"/api/v1/dialer/calls/by-sid/{call['call_sid']}")
        status = await client.post("/api/v1/dialer/status", json={"call_sid": call["call_sid"]})

        assert by_sid.json() == {"call_id": call["call_id"]}
        assert status.status_code == 200
        assert status.json()["call_id"] == call["call_id"]
        assert status.json()["call"]["status"] == "initiated"

    @pytest.mark.asyncio
    async def test_unknown_sid_is_404(self, client):
        response = await client.get("/api/v1/dialer/calls/by-sid/sim-call-unknown")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_calls_of_other_agent_are_hidden(self, client, dialer, campaign):
        session_id, contact_id = await self._start(client, campaign)
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )).json()
        app.dependency_overrides[get_current_user] = lambda: OTHER_AGENT

        disposition = await client.post(
            "/api/v1/dialer/disposition",
            json={"call_id": call["call_id"], "disposition": "NOT_INTERESTED"},
        )
        by_sid = await client.get(f"/api/v1/dialer/calls/by-sid/{call['call_sid']}")
        sid_routes = [
            await client.post(f"/api/v1/dialer/{route}", json={"call_sid": call["call_sid"]})
            for route in ("status", "end-call", "hold", "mute")
        ]

        assert disposition.status_code == 404
        assert disposition.json()["detail"]["error"] == "call_not_found"
        assert by_sid.status_code == 404
        assert [r.status_code for r in sid_routes] == [404, 404, 404, 404]

        live = dialer.sessions.get_session(session_id)
        assert live.active_call_id == call["call_id"]
        assert dialer.repository.get_call(call["call_id"]).status.value == "INITIATED"

    @pytest.mark.asyncio
    async def test_hold_and_mute(self, client, campaign, provider):
        session_id, contact_id = await self._start(client, campaign)
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )).json()
        await provider.advance_call(call["call_sid"], "in-progress")

        hold = await client.post("/api/v1/dialer/hold", json={"call_sid": call["call_sid"]})
        mute = await client.post("/api/v1/dialer/mute", json={"call_sid": call["call_sid"]})

        assert hold.json() == {"success": True, "call_sid": call["call_sid"]}
        assert mute.status_code == 200
        state = await provider.get_call_status(call["call_sid"])
        assert state.on_hold and state.muted

        await client.post("/api/v1/dialer/resume", json={"call_sid": call["call_sid"]})
        await client.post("/api/v1/dialer/unmute", json={"call_sid": call["call_sid"]})
        state = await provider.get_call_status(call["call_sid"])
        assert not state.on_hold and not state.muted

    @pytest.mark.asyncio
    async def test_hold_before_answer_is_409(self, client, campaign):
        session_id, contact_id = await self._start(client, campaign)
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": session_id, "contact_id": contact_id},
        )).json()

        response = await client.post("/api/v1/dialer/hold", json={"call_sid": call["call_sid"]})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "invalid_state"

    @pytest.mark.asyncio
    async def test_progress(self, client, campaign):
        await self._start(client, campaign)

        response = await client.get(f"/api/v1/dialer/campaigns/{campaign.id}/progress")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["by_status"]["DIALING"] == 1
        assert data["by_status"]["PENDING"] == 2

    @pytest.mark.asyncio
    async def test_progress_unknown_campaign_is_404(self, client):
        response = await client.get("/api/v1/dialer/campaigns/missing/progress")
        assert response.status_code == 404


class TestWebhooksAndHealth:

    @pytest.mark.asyncio
    async def test_event_webhook_applies_status(self, client, dialer, campaign):
        data = (await client.post("/api/v1/dialer/start", json={"campaign_id": campaign.id})).json()
        call = (await client.post(
            "/api/v1/dialer/call",
            json={"session_id": data["session"]["id"], "contact_id": data["contact"]["id"]},
        )).json()

        response = await client.post(
            "/api/v1/webhooks/telephony/event",
            json={"uuid": call["call_sid"], "status": "busy"},
        )

        assert response.json() == {"status": "ok", "call_id": call["call_id"], "call_status": "BUSY"}
        assert dialer.sessions.get_session(data["session"]["id"]).stats.busy == 1

    @pytest.mark.asyncio
    async def test_event_webhook_ignores_unknown(self, client):
        unknown_sid = await client.post(
            "/api/v1/webhooks/telephony/event",
            json={"uuid": "vonage-unknown", "status": "ringing"},
        )
        unknown_status = await client.post(
            "/api/v1/webhooks/telephony/event",
            json={"uuid": "vonage-unknown", "status": "transferred"},
        )

        assert unknown_sid.json() == {"status": "ignored"}
        assert unknown_status.json() == {"status": "ignored"}

    @pytest.mark.asyncio
    async def test_answer_webhook_returns_ncco(self, client):
        response = await client.post(
            "/api/v1/webhooks/telephony/answer",
            json={"uuid": "abc-123", "to": "+15550100000"},
        )

        ncco = response.json()
        assert ncco[0]["action"] == "record"
        assert ncco[1] == {"action": "conversation", "name": "dialer-abc-123"}

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["dialer"]["provider"] == "simulated"

    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.json()["message"] == "Coastal CRM Dialer"
