"""
Dialer Session Models
Runtime state of one agent's run through a campaign's contact list
"""
import secrets
import string
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from enum import Enum


SESSION_ID_PREFIX = "ds-"
SESSION_ID_LENGTH = 16
_SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Opaque session token, e.g. ds-k3j9x0a1b2c3d4e5"""
    suffix = "".join(secrets.choice(_SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))
    return f"{SESSION_ID_PREFIX}{suffix}"


class SessionStatus(str, Enum):
    """Dialer session status"""
    ACTIVE = "active"
    STOPPED = "stopped"


class SessionStats(BaseModel):
    """Running counters for the dialer's session panel"""
    calls_made: int = Field(default=0, ge=0)
    connected: int = Field(default=0, ge=0)
    no_answer: int = Field(default=0, ge=0)
    busy: int = Field(default=0, ge=0)
    voicemail: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    enrolled: int = Field(default=0, ge=0)
    total_talk_time: int = Field(default=0, ge=0, description="Seconds of answered talk time")


class DialerSession(BaseModel):
    """
    In-memory dialer session.

    Lives only in the process-wide registry of the DialerSessionManager and is
    lost on restart. Callers outside the manager only ever see copies.
    """

    # ========== Identity ==========
    id: str = Field(default_factory=generate_session_id, description="Opaque session token")
    campaign_id: str = Field(..., description="Campaign being dialed")
    agent_id: str = Field(..., description="Operating user")

    # ========== State ==========
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    current_contact_id: Optional[str] = Field(None, description="Campaign contact currently selected")
    active_call_id: Optional[str] = Field(None, description="Call in flight, cleared by disposition")

    # ========== Timing & Stats ==========
    started_at: datetime = Field(default_factory=datetime.utcnow)
    stopped_at: Optional[datetime] = None
    stats: SessionStats = Field(default_factory=SessionStats)

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def has_active_call(self) -> bool:
        return self.active_call_id is not None

    def stop(self) -> None:
        """Mark the session stopped. Idempotent."""
        if self.status != SessionStatus.STOPPED:
            self.status = SessionStatus.STOPPED
            self.stopped_at = datetime.utcnow()

    def snapshot(self) -> "DialerSession":
        """Detached copy safe to hand to callers"""
        return self.model_copy(deep=True)
