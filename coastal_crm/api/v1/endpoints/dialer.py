"""
Dialer API Endpoints
Session control, contact advancement, call placement and dispositions for the agent dialer
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from coastal_crm.api.v1.dependencies import CurrentUser, get_current_user, get_dialer_engine
from coastal_crm.domain.errors import (
    CallNotFoundError,
    DialerError,
    InvalidStateError,
    NotFoundError,
    SessionNotFoundError,
    TelephonyError,
    ValidationError,
)
from coastal_crm.domain.interfaces.telephony_provider import ProviderCall
from coastal_crm.domain.models.call import CallRecord
from coastal_crm.domain.models.campaign import CampaignContact, CampaignProgress, DialerContact
from coastal_crm.domain.models.dialer_session import DialerSession
from coastal_crm.domain.services.dialer_engine import DialerEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dialer", tags=["dialer"])


# ============================================
# Request / Response Models
# ============================================

class StartSessionRequest(BaseModel):
    campaign_id: str = Field(..., min_length=1)


class SessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)


class ContactRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    contact_id: str = Field(..., min_length=1)


class DispositionRequest(BaseModel):
    call_id: str = Field(..., min_length=1)
    disposition: str = Field(..., min_length=1)
    notes: Optional[str] = None
    next_follow_up: Optional[datetime] = None


class CallSidRequest(BaseModel):
    call_sid: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    session: DialerSession
    contact: Optional[DialerContact] = None
    exhausted: bool = False


class InitiateCallResponse(BaseModel):
    call_id: str
    call_sid: str
    status: str


class CallStatusResponse(BaseModel):
    call_id: Optional[str] = None
    call: ProviderCall


class CallIdResponse(BaseModel):
    call_id: str


# ============================================
# Error mapping
# ============================================

def to_http_exception(error: DialerError) -> HTTPException:
    """Map a dialer failure onto the HTTP status the UI expects"""
    if isinstance(error, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InvalidStateError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, TelephonyError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(status_code=status_code, detail=error.to_dict())


def _owned_session(engine: DialerEngine, session_id: str, user: CurrentUser) -> DialerSession:
    """Snapshot of a session run by the current user; others' sessions read as missing"""
    session = engine.sessions.get_session(session_id)
    if session is None or session.agent_id != user.id:
        raise to_http_exception(SessionNotFoundError(session_id))
    return session


def _owned_call(engine: DialerEngine, call_id: str, user: CurrentUser) -> CallRecord:
    """Call placed by the current user; others' calls read as missing"""
    call = engine.repository.get_call(call_id)
    if call is None or call.agent_id != user.id:
        raise to_http_exception(CallNotFoundError(call_id))
    return call


def _owned_sid(engine: DialerEngine, call_sid: str, user: CurrentUser) -> str:
    """Internal call id behind a provider sid, if the current user placed that call"""
    call_id = engine.coordinator.get_call_id_from_sid(call_sid)
    call = engine.repository.get_call(call_id) if call_id else None
    if call is None or call.agent_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"No active call for sid {call_sid}"},
        )
    return call_id


# ============================================
# Session lifecycle
# ============================================

@router.post("/start", response_model=SessionResponse)
async def start_session(
    request: StartSessionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """
    Start a dialer session on an ACTIVE campaign and load its first contact.
    """
    try:
        session = await engine.sessions.start_session(request.campaign_id, current_user.id)
        contact = await engine.advancer.get_next_contact(session.id)
    except DialerError as e:
        raise to_http_exception(e)

    return SessionResponse(
        session=engine.sessions.get_session(session.id),
        contact=contact,
        exhausted=contact is None,
    )


@router.get("/session", response_model=DialerSession)
async def get_session(
    session_id: str = Query(..., min_length=1),
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    return _owned_session(engine, session_id, current_user)


@router.post("/stop", response_model=DialerSession)
async def stop_session(
    request: SessionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """
    Stop a session. A call in progress keeps running until it is ended and
    dispositioned.
    """
    _owned_session(engine, request.session_id, current_user)
    session = await engine.sessions.stop_session(request.session_id)
    if session is None:
        raise to_http_exception(SessionNotFoundError(request.session_id))
    return session


# ============================================
# Contacts
# ============================================

@router.post("/next", response_model=SessionResponse)
async def next_contact(
    request: SessionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    _owned_session(engine, request.session_id, current_user)
    try:
        contact = await engine.advancer.get_next_contact(request.session_id)
    except DialerError as e:
        raise to_http_exception(e)

    return SessionResponse(
        session=engine.sessions.get_session(request.session_id),
        contact=contact,
        exhausted=contact is None,
    )


@router.post("/skip", response_model=CampaignContact)
async def skip_contact(
    request: ContactRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    _owned_session(engine, request.session_id, current_user)
    try:
        return await engine.advancer.skip_contact(request.session_id, request.contact_id)
    except DialerError as e:
        raise to_http_exception(e)


# ============================================
# Calls
# ============================================

@router.post("/call", response_model=InitiateCallResponse)
async def initiate_call(
    request: ContactRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """
    Dial the session's current contact.

    409 if the session already has a call in flight.
    """
    _owned_session(engine, request.session_id, current_user)
    try:
        result = await engine.coordinator.initiate_call(request.session_id, request.contact_id)
    except DialerError as e:
        raise to_http_exception(e)

    return InitiateCallResponse(
        call_id=result.call_id,
        call_sid=result.provider_call.sid,
        status=result.provider_call.status.value,
    )


@router.post("/disposition", response_model=CallRecord)
async def submit_disposition(
    request: DispositionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """
    Record the outcome of a call and free the session for its next contact.
    """
    _owned_call(engine, request.call_id, current_user)
    try:
        return await engine.coordinator.submit_disposition(
            request.call_id,
            request.disposition,
            notes=request.notes,
            next_follow_up=request.next_follow_up,
        )
    except DialerError as e:
        raise to_http_exception(e)


@router.post("/status", response_model=CallStatusResponse)
async def call_status(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    _owned_sid(engine, request.call_sid, current_user)
    try:
        report = await engine.coordinator.poll_call_status(request.call_sid)
    except DialerError as e:
        raise to_http_exception(e)

    return CallStatusResponse(call_id=report.call_id, call=report.provider_call)


@router.post("/end-call")
async def end_call(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    _owned_sid(engine, request.call_sid, current_user)
    try:
        await engine.coordinator.end_call(request.call_sid)
    except DialerError as e:
        raise to_http_exception(e)

    return {"success": True, "call_sid": request.call_sid}


@router.get("/calls/by-sid/{call_sid}", response_model=CallIdResponse)
async def call_id_from_sid(
    call_sid: str,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    return CallIdResponse(call_id=_owned_sid(engine, call_sid, current_user))


# ============================================
# In-call controls
# ============================================

async def _control(engine: DialerEngine, request: CallSidRequest, user: CurrentUser, action: str) -> dict:
    _owned_sid(engine, request.call_sid, user)
    try:
        await getattr(engine.coordinator, action)(request.call_sid)
    except DialerError as e:
        raise to_http_exception(e)

    return {"success": True, "call_sid": request.call_sid}


@router.post("/hold")
async def hold_call(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """Put the connected call on hold. 409 unless the call is in progress."""
    return await _control(engine, request, current_user, "hold_call")


@router.post("/resume")
async def resume_call(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    return await _control(engine, request, current_user, "resume_call")


@router.post("/mute")
async def mute_call(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    return await _control(engine, request, current_user, "mute_call")


@router.post("/unmute")
async def unmute_call(
    request: CallSidRequest,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    return await _control(engine, request, current_user, "unmute_call")


# ============================================
# Campaign progress
# ============================================

@router.get("/campaigns/{campaign_id}/progress", response_model=CampaignProgress)
async def campaign_progress(
    campaign_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    engine: DialerEngine = Depends(get_dialer_engine)
):
    """Contact counts per status for the campaign, computed on read"""
    if engine.repository.get_campaign(campaign_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": f"Campaign not found: {campaign_id}"},
        )
    return engine.get_campaign_progress(campaign_id)
