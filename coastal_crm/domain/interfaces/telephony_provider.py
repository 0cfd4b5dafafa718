"""
Telephony Provider Interface
Abstract base class for telephony/VoIP providers
"""
from abc import ABC, abstractmethod
from typing import Optional, Awaitable, Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ProviderCallStatus(str, Enum):
    """Status vocabulary shared by all providers"""
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    ANSWERED = "answered"
    COMPLETED = "completed"
    NO_ANSWER = "no-answer"
    BUSY = "busy"
    FAILED = "failed"
    VOICEMAIL = "voicemail"


# Carrier status strings (Vonage event names included) to the shared vocabulary
CARRIER_STATUS_MAP = {
    "initiated": ProviderCallStatus.INITIATED,
    "started": ProviderCallStatus.INITIATED,
    "queued": ProviderCallStatus.INITIATED,
    "ringing": ProviderCallStatus.RINGING,
    "in-progress": ProviderCallStatus.IN_PROGRESS,
    "in_progress": ProviderCallStatus.IN_PROGRESS,
    "answered": ProviderCallStatus.ANSWERED,
    "completed": ProviderCallStatus.COMPLETED,
    "no-answer": ProviderCallStatus.NO_ANSWER,
    "no_answer": ProviderCallStatus.NO_ANSWER,
    "unanswered": ProviderCallStatus.NO_ANSWER,
    "timeout": ProviderCallStatus.NO_ANSWER,
    "busy": ProviderCallStatus.BUSY,
    "failed": ProviderCallStatus.FAILED,
    "rejected": ProviderCallStatus.FAILED,
    "cancelled": ProviderCallStatus.FAILED,
    "voicemail": ProviderCallStatus.VOICEMAIL,
    "machine": ProviderCallStatus.VOICEMAIL,
}


def normalize_status(raw: Optional[str]) -> Optional[ProviderCallStatus]:
    """Map a carrier status string onto ProviderCallStatus (None if unknown)"""
    if not raw:
        return None
    return CARRIER_STATUS_MAP.get(str(raw).strip().lower())


class ProviderCall(BaseModel):
    """Provider-side view of one call leg"""
    sid: str = Field(..., description="Provider call identifier")
    status: ProviderCallStatus = ProviderCallStatus.INITIATED
    duration: int = Field(default=0, ge=0, description="Answered seconds")
    to: str
    from_number: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)
    answered_at: Optional[datetime] = None
    recording_url: Optional[str] = None
    on_hold: bool = False
    muted: bool = False


# Async callable invoked with (sid, status) on every provider status change
StatusCallback = Callable[[str, ProviderCallStatus], Awaitable[None]]


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers"""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider (credentials, clients)"""
        pass

    @abstractmethod
    async def place_call(
        self,
        to_number: str,
        from_number: Optional[str] = None
    ) -> ProviderCall:
        """
        Initiate an outbound call

        Args:
            to_number: Destination phone number
            from_number: Caller ID number (provider default if omitted)

        Returns:
            ProviderCall with the provider's sid and initial status

        Raises:
            TelephonyError: If the carrier rejects the call or the API fails
        """
        pass

    @abstractmethod
    async def end_call(self, sid: str) -> None:
        """End an active call"""
        pass

    @abstractmethod
    async def hold_call(self, sid: str) -> None:
        """
        Put a connected call on hold

        Raises:
            InvalidStateError: The call is not in progress
            TelephonyError: The provider could not apply the hold
        """
        pass

    @abstractmethod
    async def resume_call(self, sid: str) -> None:
        """Take a held call off hold"""
        pass

    @abstractmethod
    async def mute_call(self, sid: str) -> None:
        """Stop the agent's audio reaching the called party"""
        pass

    @abstractmethod
    async def unmute_call(self, sid: str) -> None:
        pass

    @abstractmethod
    async def get_call_status(self, sid: str) -> ProviderCall:
        """Get current call status"""
        pass

    @abstractmethod
    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        """Register the receiver of asynchronous status changes"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
