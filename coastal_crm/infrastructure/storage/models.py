"""
SQLAlchemy Database Models
Tables the dialer reads and writes: campaigns, leads, campaign_contacts, calls
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Float, ForeignKey, Index
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import uuid

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Campaign(Base):
    """Campaign model - maps to campaigns table"""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(50), nullable=False, default="DRAFT")
    dialer_mode = Column(String(50), nullable=False, default="POWER")
    caller_id = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contacts = relationship("CampaignContact", back_populates="campaign", cascade="all, delete-orphan")
    calls = relationship("Call", back_populates="campaign")


class Lead(Base):
    """Lead model - maps to leads table"""
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    business_name = Column(String(255), nullable=False)
    contact_name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(255))
    total_debt_est = Column(Float)
    industry = Column(String(100))
    score = Column(Integer)
    status = Column(String(50), nullable=False, default="NEW")
    last_contacted_at = Column(DateTime)
    next_follow_up_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign_contacts = relationship("CampaignContact", back_populates="lead", cascade="all, delete-orphan")
    calls = relationship("Call", back_populates="lead")


class CampaignContact(Base):
    """Lead membership in a campaign - maps to campaign_contacts table"""
    __tablename__ = "campaign_contacts"
    __table_args__ = (
        Index("ix_campaign_contacts_campaign_status", "campaign_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(50), nullable=False, default="PENDING")
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt = Column(DateTime)
    next_eligible_at = Column(DateTime)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="contacts")
    lead = relationship("Lead", back_populates="campaign_contacts")


class Call(Base):
    """Call model - maps to calls table"""
    __tablename__ = "calls"

    id = Column(String(36), primary_key=True, default=_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="SET NULL"))
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="SET NULL"))
    campaign_contact_id = Column(String(36), ForeignKey("campaign_contacts.id", ondelete="SET NULL"))
    agent_id = Column(String(255))
    direction = Column(String(20), nullable=False, default="OUTBOUND")
    phone_number = Column(String(20), nullable=False)
    external_sid = Column(String(255), index=True)
    status = Column(String(50), nullable=False, default="INITIATED")
    started_at = Column(DateTime)
    answered_at = Column(DateTime)
    ended_at = Column(DateTime)
    duration_seconds = Column(Integer)
    recording_url = Column(Text)
    disposition = Column(String(50))
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="calls")
    lead = relationship("Lead", back_populates="calls")
