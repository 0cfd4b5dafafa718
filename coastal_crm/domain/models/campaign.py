"""
Campaign Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict
from datetime import datetime
from enum import Enum


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class DialerMode(str, Enum):
    POWER = "POWER"
    PREVIEW = "PREVIEW"
    MANUAL = "MANUAL"


class ContactStatus(str, Enum):
    """Dialing status of a lead within one campaign"""
    PENDING = "PENDING"
    DIALING = "DIALING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class Campaign(BaseModel):
    """Campaign for outbound dialing"""
    id: str
    name: str
    description: Optional[str] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    dialer_mode: DialerMode = DialerMode.POWER
    caller_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CampaignContact(BaseModel):
    """A lead's membership in a campaign"""
    id: str
    campaign_id: str
    lead_id: str
    status: ContactStatus = ContactStatus.PENDING
    attempt_count: int = Field(default=0, ge=0)
    last_attempt: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    priority: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DialerContact(BaseModel):
    """
    Contact card shown to the agent while dialing.
    Combines the campaign contact with the lead's details.
    """
    id: str = Field(..., description="Campaign contact id")
    lead_id: str
    business_name: str
    contact_name: str
    phone: str
    total_debt_est: Optional[float] = None
    industry: Optional[str] = None
    score: Optional[int] = None
    attempts: int = 0
    priority: int = 0


class CampaignProgress(BaseModel):
    """Contact counts per status, recomputed from the contact rows on every read"""
    campaign_id: str
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)

    @property
    def remaining(self) -> int:
        return self.by_status.get(ContactStatus.PENDING.value, 0)
