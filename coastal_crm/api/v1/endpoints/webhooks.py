"""
Webhooks API Endpoints
Handles incoming call status webhooks from telephony providers (Vonage)
"""
import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from coastal_crm.api.v1.dependencies import get_dialer_engine
from coastal_crm.domain.interfaces.telephony_provider import normalize_status
from coastal_crm.domain.services.dialer_engine import DialerEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _parse_duration(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed duration in webhook: {value!r}")
        return None


@router.post("/telephony/answer")
async def telephony_answer(request: Request):
    """
    Handle the provider's answer webhook.

    Returns an NCCO that records the leg and parks it in a named
    conversation the agent's softphone joins.
    """
    data = await request.json()
    call_uuid = data.get("uuid")
    base_url = os.getenv("API_BASE_URL", "http://localhost:8000")

    logger.info(f"Answer webhook: call_uuid={call_uuid}, to={data.get('to')}")

    return [
        {
            "action": "record",
            "eventUrl": [f"{base_url}/api/v1/webhooks/telephony/recording"],
        },
        {
            "action": "conversation",
            "name": f"dialer-{call_uuid}",
        },
    ]


@router.post("/telephony/event")
async def telephony_event(
    request: Request,
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """
    Handle a call status webhook.

    Always acknowledges with 200 so the provider does not retry; unknown
    statuses and calls this process did not place are ignored.
    """
    data = await request.json()

    call_sid = data.get("uuid") or data.get("call_sid") or data.get("sid")
    raw_status = data.get("status")
    provider_status = normalize_status(raw_status)

    if not call_sid or provider_status is None:
        logger.warning(f"Ignoring telephony event: sid={call_sid}, status={raw_status}")
        return {"status": "ignored"}

    call = await engine.coordinator.apply_status_event(
        call_sid,
        provider_status,
        duration=_parse_duration(data.get("duration")),
        recording_url=data.get("recording_url"),
    )

    if call is None:
        return {"status": "ignored"}

    return {"status": "ok", "call_id": call.id, "call_status": call.status.value}


@router.post("/telephony/recording")
async def telephony_recording(request: Request):
    """Recording-ready notification; logged until recordings are stored"""
    data = await request.json()
    logger.info(
        f"Recording ready: call_uuid={data.get('conversation_uuid') or data.get('uuid')}, "
        f"url={data.get('recording_url')}"
    )
    return {"status": "ok"}
