"""
Call Lifecycle Coordinator
Places calls for dialer sessions, applies provider status events and
records the agent's disposition
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from coastal_crm.domain.errors import (
    CallNotFoundError,
    ContactNotFoundError,
    InvalidStateError,
    TelephonyError,
    ValidationError,
)
from coastal_crm.domain.interfaces.telephony_provider import (
    ProviderCall,
    ProviderCallStatus,
    TelephonyProvider,
)
from coastal_crm.domain.models.call import CallRecord, CallStatus
from coastal_crm.domain.models.campaign import ContactStatus
from coastal_crm.domain.models.dialer_session import DialerSession
from coastal_crm.domain.models.disposition import Disposition, DispositionPolicy
from coastal_crm.domain.services.dialer_session_manager import DialerSessionManager
from coastal_crm.infrastructure.storage.repository import DialerRepository

logger = logging.getLogger(__name__)


# Provider status -> Call status. "completed" means the line hung up;
# COMPLETED on the Call is reserved for the disposition.
PROVIDER_TO_CALL_STATUS = {
    ProviderCallStatus.INITIATED: CallStatus.INITIATED,
    ProviderCallStatus.RINGING: CallStatus.RINGING,
    ProviderCallStatus.IN_PROGRESS: CallStatus.IN_PROGRESS,
    ProviderCallStatus.ANSWERED: CallStatus.ANSWERED,
    ProviderCallStatus.COMPLETED: CallStatus.ENDED,
    ProviderCallStatus.NO_ANSWER: CallStatus.NO_ANSWER,
    ProviderCallStatus.BUSY: CallStatus.BUSY,
    ProviderCallStatus.VOICEMAIL: CallStatus.VOICEMAIL,
    ProviderCallStatus.FAILED: CallStatus.FAILED,
}

CONNECTED_CALL_STATUSES = {CallStatus.IN_PROGRESS, CallStatus.ANSWERED}

ENDED_CALL_STATUSES = {
    CallStatus.ENDED,
    CallStatus.NO_ANSWER,
    CallStatus.BUSY,
    CallStatus.VOICEMAIL,
    CallStatus.FAILED,
}

# Session counter bumped when a call first reaches the status
STATUS_COUNTERS = {
    CallStatus.NO_ANSWER: "no_answer",
    CallStatus.BUSY: "busy",
    CallStatus.VOICEMAIL: "voicemail",
    CallStatus.FAILED: "failed",
}


class InitiatedCall(BaseModel):
    """Result of placing a call for a session"""
    call_id: str
    provider_call: ProviderCall


class CallStatusReport(BaseModel):
    """Provider snapshot of a call plus the internal call id it maps to"""
    call_id: Optional[str] = None
    provider_call: ProviderCall


class CallCoordinator:
    """
    Owns the lifecycle of each dialer call.

    Keeps the SID index (provider call id -> internal call id) and the
    call -> session index used to route status events and dispositions to
    the owning session's lock. Both indexes are in memory and pruned when
    the call receives its disposition.

    Status reports for SIDs not yet indexed are parked for a short while,
    since a carrier can report on a call before place_call has returned.
    """

    # Parked reports for SIDs that never get indexed are dropped after this long
    EARLY_EVENT_TTL_SECONDS = 30

    def __init__(
        self,
        sessions: DialerSessionManager,
        repository: DialerRepository,
        provider: TelephonyProvider,
        policy: DispositionPolicy,
        default_caller_id: Optional[str] = None
    ):
        self._sessions = sessions
        self._repository = repository
        self._provider = provider
        self._policy = policy
        self._default_caller_id = default_caller_id

        self._sid_index: Dict[str, str] = {}
        self._call_sessions: Dict[str, str] = {}
        self._early_events: Dict[str, List[Tuple[datetime, ProviderCallStatus, Optional[int], Optional[str]]]] = {}

    @property
    def provider(self) -> TelephonyProvider:
        return self._provider

    # ========== Placing calls ==========

    async def initiate_call(self, session_id: str, contact_id: str) -> InitiatedCall:
        """
        Place an outbound call to the session's current contact.

        The contact must be the one this session claimed, still DIALING and
        without a call awaiting disposition. The session lock is held while
        the provider places the call, so a second initiate for the same
        session waits and is then rejected.

        Status reports that reached the coordinator before the call was
        recorded are replayed once the SID is indexed.

        Raises:
            SessionNotFoundError: Unknown session id
            ContactNotFoundError: Unknown contact id
            InvalidStateError: Session stopped or busy, or contact not dialable
            TelephonyError: The provider could not place the call
        """
        if not contact_id:
            raise ValidationError("contact_id is required")

        async with self._sessions.lock(session_id) as session:
            if not session.is_active:
                raise InvalidStateError(f"Session {session_id} is stopped")
            if session.has_active_call:
                logger.warning(f"Rejected call for {session_id}: call {session.active_call_id} already active")
                raise InvalidStateError(
                    f"Session {session_id} already has active call {session.active_call_id}"
                )

            contact = self._repository.get_contact(contact_id)
            if contact is None:
                raise ContactNotFoundError(contact_id)
            if contact.campaign_id != session.campaign_id:
                raise InvalidStateError(
                    f"Contact {contact_id} does not belong to campaign {session.campaign_id}"
                )
            if session.current_contact_id != contact_id:
                raise InvalidStateError(
                    f"Contact {contact_id} is not the current contact of session {session_id}"
                )
            if contact.status != ContactStatus.DIALING:
                raise InvalidStateError(
                    f"Contact {contact_id} is {contact.status.value}, expected DIALING"
                )
            if self._repository.has_open_call(contact_id):
                logger.warning(f"Rejected call for {session_id}: contact {contact_id} already has a call open")
                raise InvalidStateError(f"Contact {contact_id} already has a call awaiting disposition")

            dialer_contact = self._repository.get_dialer_contact(contact_id)
            from_number = self._caller_id_for(session.campaign_id)

            try:
                provider_call = await self._provider.place_call(dialer_contact.phone, from_number)
            except TelephonyError as e:
                logger.error(f"Provider failed to place call for contact {contact_id}: {e.message}", exc_info=True)
                raise
            except Exception as e:
                logger.error(f"Provider failed to place call for contact {contact_id}: {e}", exc_info=True)
                raise TelephonyError(str(e), provider=self._provider.name) from e

            call = self._repository.create_call(
                contact_id=contact_id,
                agent_id=session.agent_id,
                phone_number=dialer_contact.phone,
                external_sid=provider_call.sid,
                started_at=provider_call.started_at,
            )

            self._sid_index[provider_call.sid] = call.id
            self._call_sessions[call.id] = session.id
            session.active_call_id = call.id
            session.current_contact_id = contact_id
            session.stats.calls_made += 1

            logger.info(
                f"Call {call.id} placed for session {session_id} "
                f"(contact={contact_id}, sid={provider_call.sid})"
            )

        for status, duration, recording_url in self._take_early_events(provider_call.sid):
            await self.apply_status_event(
                provider_call.sid, status, duration=duration, recording_url=recording_url
            )

        return InitiatedCall(call_id=call.id, provider_call=provider_call)

    # ========== Disposition ==========

    async def submit_disposition(
        self,
        call_id: str,
        disposition: str,
        notes: Optional[str] = None,
        next_follow_up: Optional[datetime] = None
    ) -> CallRecord:
        """
        Finalize a call with the agent's disposition.

        The call becomes COMPLETED, the contact and lead are updated per the
        disposition policy and the owning session is freed for its next
        contact. The session is not advanced.

        Raises:
            ValidationError: Missing call id or unknown disposition
            CallNotFoundError: Unknown call id
            InvalidStateError: The call already has a disposition
        """
        if not call_id:
            raise ValidationError("call_id is required")

        code = self._policy.normalize(disposition)
        if code is None:
            raise ValidationError(f"Unknown disposition: {disposition}")

        if self._repository.get_call(call_id) is None:
            raise CallNotFoundError(call_id)

        async with self._owning_session(call_id) as session:
            result = self._repository.finalize_call(
                call_id,
                disposition=code,
                notes=notes,
                policy=self._policy,
                next_follow_up=next_follow_up,
            )
            call: CallRecord = result["call"]

            if session is not None:
                if session.active_call_id == call_id:
                    session.active_call_id = None
                if code == Disposition.ENROLLED.value:
                    session.stats.enrolled += 1

            self._forget_call(call)

        logger.info(f"Disposition {code} recorded for call {call_id}")
        return call

    # ========== Provider status ==========

    def get_call_id_from_sid(self, sid: str) -> Optional[str]:
        return self._sid_index.get(sid)

    async def apply_status_event(
        self,
        sid: str,
        status: Union[ProviderCallStatus, str],
        duration: Optional[int] = None,
        recording_url: Optional[str] = None
    ) -> Optional[CallRecord]:
        """
        Apply one provider status report to the matching Call.

        Events for calls that already have a disposition and repeats of the
        current status are ignored. Events for SIDs not indexed yet are
        parked and replayed if the SID is registered in time.
        A terminal report is never walked back by a late progress report.

        Returns:
            The updated call, or None if the event was ignored
        """
        provider_status = ProviderCallStatus(status)

        call_id = self._sid_index.get(sid)
        if call_id is None:
            logger.debug(f"Parking status {provider_status.value} for unknown sid {sid}")
            self._park_early_event(sid, provider_status, duration, recording_url)
            return None

        new_status = PROVIDER_TO_CALL_STATUS[provider_status]

        async with self._owning_session(call_id) as session:
            call = self._repository.get_call(call_id)
            if call is None or call.is_finalized:
                logger.debug(f"Ignoring status {provider_status.value} for finalized call {call_id}")
                return None

            if call.status == new_status:
                return call

            if call.status in ENDED_CALL_STATUSES and new_status not in ENDED_CALL_STATUSES:
                logger.warning(
                    f"Ignoring late status {provider_status.value} for call {call_id} ({call.status.value})"
                )
                return None

            now = datetime.utcnow()
            fields = {"status": new_status}

            if new_status in CONNECTED_CALL_STATUSES and call.answered_at is None:
                fields["answered_at"] = now

            if new_status in ENDED_CALL_STATUSES:
                fields["ended_at"] = call.ended_at or now

            talk_time = 0
            if new_status == CallStatus.ENDED:
                if duration is None or recording_url is None:
                    snapshot = await self._provider_snapshot(sid)
                    if snapshot is not None:
                        duration = duration if duration is not None else snapshot.duration
                        recording_url = recording_url or snapshot.recording_url
                if duration is None and call.answered_at is not None:
                    duration = int((now - call.answered_at).total_seconds())
                talk_time = duration or 0
                fields["duration_seconds"] = talk_time
                if recording_url:
                    fields["recording_url"] = recording_url

            updated = self._repository.update_call(call_id, **fields)

            if session is not None:
                self._count_transition(session, call.status, new_status, talk_time)

            logger.info(f"Call {call_id} {call.status.value} -> {new_status.value} (sid={sid})")
            return updated

    async def poll_call_status(self, sid: str) -> CallStatusReport:
        """
        Ask the provider for a call's status and apply it.

        Raises:
            ValidationError: Missing sid
            TelephonyError: The provider does not know the call
        """
        if not sid:
            raise ValidationError("call_sid is required")

        provider_call = await self._provider.get_call_status(sid)
        call_id = self.get_call_id_from_sid(sid)

        if call_id is not None:
            await self.apply_status_event(
                sid,
                provider_call.status,
                duration=provider_call.duration,
                recording_url=provider_call.recording_url,
            )

        return CallStatusReport(call_id=call_id, provider_call=provider_call)

    async def end_call(self, sid: str) -> None:
        """Hang up through the provider; the resulting status event updates the Call"""
        if not sid:
            raise ValidationError("call_sid is required")

        try:
            await self._provider.end_call(sid)
        except TelephonyError:
            raise
        except Exception as e:
            logger.error(f"Provider failed to end call {sid}: {e}", exc_info=True)
            raise TelephonyError(str(e), provider=self._provider.name) from e

        logger.info(f"Hangup requested for sid {sid}")

    # ========== In-call controls ==========

    async def hold_call(self, sid: str) -> None:
        await self._control_call(sid, "hold_call")

    async def resume_call(self, sid: str) -> None:
        await self._control_call(sid, "resume_call")

    async def mute_call(self, sid: str) -> None:
        await self._control_call(sid, "mute_call")

    async def unmute_call(self, sid: str) -> None:
        await self._control_call(sid, "unmute_call")

    async def _control_call(self, sid: str, action: str) -> None:
        """
        Run a hold/mute control on a connected call through the provider.

        Raises:
            ValidationError: Missing sid
            InvalidStateError: The call is not in progress
            TelephonyError: The provider could not apply the control
        """
        if not sid:
            raise ValidationError("call_sid is required")

        try:
            await getattr(self._provider, action)(sid)
        except (InvalidStateError, TelephonyError):
            raise
        except Exception as e:
            logger.error(f"Provider failed to {action.replace('_call', '')} {sid}: {e}", exc_info=True)
            raise TelephonyError(str(e), provider=self._provider.name) from e

        logger.info(f"{action} applied to sid {sid}")

    # ========== Helpers ==========

    def _park_early_event(
        self,
        sid: str,
        status: ProviderCallStatus,
        duration: Optional[int],
        recording_url: Optional[str]
    ) -> None:
        now = datetime.utcnow()
        expired = [
            parked_sid for parked_sid, events in self._early_events.items()
            if (now - events[0][0]).total_seconds() > self.EARLY_EVENT_TTL_SECONDS
        ]
        for parked_sid in expired:
            del self._early_events[parked_sid]

        self._early_events.setdefault(sid, []).append((now, status, duration, recording_url))

    def _take_early_events(self, sid: str) -> List[Tuple[ProviderCallStatus, Optional[int], Optional[str]]]:
        events = self._early_events.pop(sid, [])
        return [(status, duration, recording_url) for _, status, duration, recording_url in events]

    @asynccontextmanager
    async def _owning_session(self, call_id: str) -> AsyncIterator[Optional[DialerSession]]:
        """Hold the lock of the session that placed the call, if it still exists"""
        session_id = self._call_sessions.get(call_id)
        if session_id is not None and self._sessions.exists(session_id):
            async with self._sessions.lock(session_id) as session:
                yield session
        else:
            yield None

    def _caller_id_for(self, campaign_id: str) -> Optional[str]:
        campaign = self._repository.get_campaign(campaign_id)
        if campaign is not None and campaign.caller_id:
            return campaign.caller_id
        return self._default_caller_id

    async def _provider_snapshot(self, sid: str) -> Optional[ProviderCall]:
        try:
            return await self._provider.get_call_status(sid)
        except TelephonyError as e:
            logger.warning(f"Could not fetch final call details for {sid}: {e.message}")
            return None

    def _count_transition(
        self,
        session: DialerSession,
        old_status: CallStatus,
        new_status: CallStatus,
        talk_time: int
    ) -> None:
        counter = STATUS_COUNTERS.get(new_status)
        if new_status in CONNECTED_CALL_STATUSES:
            counter = None if old_status in CONNECTED_CALL_STATUSES else "connected"
        if counter:
            setattr(session.stats, counter, getattr(session.stats, counter) + 1)
        if talk_time:
            session.stats.total_talk_time += talk_time

    def _forget_call(self, call: CallRecord) -> None:
        if call.external_sid:
            self._sid_index.pop(call.external_sid, None)
        self._call_sessions.pop(call.id, None)
