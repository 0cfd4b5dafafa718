"""
Simulated Telephony Provider
In-process stand-in for a carrier, used in development and tests
"""
import asyncio
import logging
import random
import string
from datetime import datetime
from typing import Dict, Iterable, Optional, Set, Tuple

from coastal_crm.domain.errors import InvalidStateError, TelephonyError
from coastal_crm.domain.interfaces.telephony_provider import (
    ProviderCall,
    ProviderCallStatus,
    StatusCallback,
    TelephonyProvider,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {
    ProviderCallStatus.COMPLETED,
    ProviderCallStatus.NO_ANSWER,
    ProviderCallStatus.BUSY,
    ProviderCallStatus.FAILED,
    ProviderCallStatus.VOICEMAIL,
}

CONNECTED_STATUSES = {ProviderCallStatus.IN_PROGRESS, ProviderCallStatus.ANSWERED}


class SimulatedTelephonyProvider(TelephonyProvider):
    """
    Fake carrier that walks each call through a realistic status sequence.

    Progression (when auto_progress is on):
    - initiated, immediately
    - ringing, after ringing_delay seconds
    - outcome, after answer_delay more seconds:
      60% in-progress, 20% no-answer, 10% busy, 10% voicemail

    Unanswered calls are forgotten retention_seconds after they finish, as a
    real carrier stops reporting on old legs.

    Hold and mute are flags on the call and only apply while it is connected.
    """

    RECORDING_BASE_URL = "https://recordings.coastal-crm.dev"

    def __init__(
        self,
        auto_progress: bool = True,
        ringing_delay: Tuple[float, float] = (1.0, 2.0),
        answer_delay: Tuple[float, float] = (2.0, 4.0),
        retention_seconds: Optional[float] = 5.0,
        reject_numbers: Optional[Iterable[str]] = None,
        rng: Optional[random.Random] = None
    ):
        self._auto_progress = auto_progress
        self._ringing_delay = ringing_delay
        self._answer_delay = answer_delay
        self._retention_seconds = retention_seconds
        self._reject_numbers: Set[str] = set(reject_numbers or [])
        self._rng = rng or random.Random()

        self._calls: Dict[str, ProviderCall] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._forget_tasks: Set[asyncio.Task] = set()
        self._status_callback: Optional[StatusCallback] = None

    @property
    def name(self) -> str:
        return "simulated"

    async def initialize(self) -> None:
        logger.info(f"Simulated telephony provider ready (auto_progress={self._auto_progress})")

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        self._status_callback = callback

    async def place_call(
        self,
        to_number: str,
        from_number: Optional[str] = None
    ) -> ProviderCall:
        if not to_number or not to_number.strip():
            raise TelephonyError("Invalid destination number", provider=self.name)

        if to_number in self._reject_numbers:
            raise TelephonyError(f"Carrier rejected call to {to_number}", provider=self.name)

        sid = f"sim-call-{self._generate_id()}"
        call = ProviderCall(
            sid=sid,
            status=ProviderCallStatus.INITIATED,
            to=to_number,
            from_number=from_number,
        )
        self._calls[sid] = call

        logger.info(f"Simulated call placed: {sid} -> {to_number}")
        await self._notify(sid, ProviderCallStatus.INITIATED)

        if self._auto_progress:
            self._tasks[sid] = asyncio.create_task(self._progress(sid))

        return call.model_copy()

    async def end_call(self, sid: str) -> None:
        call = self._calls.get(sid)
        if not call:
            return

        self._cancel_progress(sid)

        if call.status in TERMINAL_STATUSES:
            return

        if call.answered_at:
            call.duration = int((datetime.utcnow() - call.answered_at).total_seconds())
            call.recording_url = self.get_recording_url(sid)

        call.status = ProviderCallStatus.COMPLETED
        call.on_hold = False
        call.muted = False
        logger.info(f"Simulated call ended: {sid} (duration={call.duration}s)")
        await self._notify(sid, ProviderCallStatus.COMPLETED)
        self._schedule_forget(sid)

    async def hold_call(self, sid: str) -> None:
        self._connected_call(sid).on_hold = True
        logger.info(f"Simulated call on hold: {sid}")

    async def resume_call(self, sid: str) -> None:
        self._connected_call(sid).on_hold = False
        logger.info(f"Simulated call resumed: {sid}")

    async def mute_call(self, sid: str) -> None:
        self._connected_call(sid).muted = True

    async def unmute_call(self, sid: str) -> None:
        self._connected_call(sid).muted = False

    async def get_call_status(self, sid: str) -> ProviderCall:
        call = self._calls.get(sid)
        if not call:
            raise TelephonyError(f"Call {sid} not found", provider=self.name)

        if call.status == ProviderCallStatus.IN_PROGRESS and call.answered_at:
            call.duration = int((datetime.utcnow() - call.answered_at).total_seconds())

        return call.model_copy()

    async def advance_call(self, sid: str, status: ProviderCallStatus) -> None:
        """Move a call to the given status and report it, as the carrier would"""
        call = self._calls.get(sid)
        if not call:
            raise TelephonyError(f"Call {sid} not found", provider=self.name)

        status = ProviderCallStatus(status)
        call.status = status
        if status == ProviderCallStatus.IN_PROGRESS and call.answered_at is None:
            call.answered_at = datetime.utcnow()

        await self._notify(sid, status)

        if status in TERMINAL_STATUSES:
            self._schedule_forget(sid)

    def get_recording_url(self, sid: str) -> str:
        return f"{self.RECORDING_BASE_URL}/{sid}/recording.mp3"

    async def cleanup(self) -> None:
        for sid in list(self._tasks):
            self._cancel_progress(sid)
        for task in list(self._forget_tasks):
            task.cancel()
        self._calls.clear()

    async def _progress(self, sid: str) -> None:
        try:
            await asyncio.sleep(self._rng.uniform(*self._ringing_delay))
            if self._is_finished(sid):
                return
            await self.advance_call(sid, ProviderCallStatus.RINGING)

            await asyncio.sleep(self._rng.uniform(*self._answer_delay))
            if self._is_finished(sid):
                return
            await self.advance_call(sid, self._determine_outcome())
        except asyncio.CancelledError:
            pass
        finally:
            self._tasks.pop(sid, None)

    def _determine_outcome(self) -> ProviderCallStatus:
        roll = self._rng.random()
        if roll < 0.6:
            return ProviderCallStatus.IN_PROGRESS
        if roll < 0.8:
            return ProviderCallStatus.NO_ANSWER
        if roll < 0.9:
            return ProviderCallStatus.BUSY
        return ProviderCallStatus.VOICEMAIL

    def _connected_call(self, sid: str) -> ProviderCall:
        call = self._calls.get(sid)
        if not call:
            raise TelephonyError(f"Call {sid} not found", provider=self.name)
        if call.status not in CONNECTED_STATUSES:
            raise InvalidStateError(f"Call {sid} is not in progress ({call.status.value})")
        return call

    def _is_finished(self, sid: str) -> bool:
        call = self._calls.get(sid)
        return call is None or call.status in TERMINAL_STATUSES

    def _cancel_progress(self, sid: str) -> None:
        task = self._tasks.pop(sid, None)
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _schedule_forget(self, sid: str) -> None:
        if self._retention_seconds is None:
            return

        async def _forget():
            await asyncio.sleep(self._retention_seconds)
            self._calls.pop(sid, None)

        task = asyncio.create_task(_forget())
        self._forget_tasks.add(task)
        task.add_done_callback(self._forget_tasks.discard)

    async def _notify(self, sid: str, status: ProviderCallStatus) -> None:
        if not self._status_callback:
            return
        try:
            await self._status_callback(sid, status)
        except Exception as e:
            logger.error(f"Status callback failed for {sid} ({status.value}): {e}", exc_info=True)

    def _generate_id(self) -> str:
        alphabet = string.ascii_lowercase + string.digits
        return "".join(self._rng.choice(alphabet) for _ in range(24))
