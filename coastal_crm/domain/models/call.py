"""
Call Domain Models
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """Status of a Call record"""
    INITIATED = "INITIATED"
    RINGING = "RINGING"
    IN_PROGRESS = "IN_PROGRESS"
    ANSWERED = "ANSWERED"
    NO_ANSWER = "NO_ANSWER"
    BUSY = "BUSY"
    VOICEMAIL = "VOICEMAIL"
    FAILED = "FAILED"
    ENDED = "ENDED"          # Provider hung up, waiting for the agent's disposition
    COMPLETED = "COMPLETED"  # Disposition submitted (terminal)


class CallDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class CallRecord(BaseModel):
    """Snapshot of a persisted call"""
    id: str
    campaign_id: Optional[str] = None
    lead_id: Optional[str] = None
    agent_id: Optional[str] = None
    direction: CallDirection = CallDirection.OUTBOUND
    phone_number: str
    external_sid: Optional[str] = None
    status: CallStatus
    started_at: Optional[datetime] = None
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    recording_url: Optional[str] = None
    disposition: Optional[str] = None
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_finalized(self) -> bool:
        return self.status == CallStatus.COMPLETED
