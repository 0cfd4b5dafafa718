"""
Shared fixtures: in-memory database, seeded campaigns and a dialer engine
wired to the simulated provider with automatic progression turned off.
"""
import os
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytest_asyncio

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from coastal_crm.domain.models.disposition import DispositionPolicy
from coastal_crm.domain.services.dialer_engine import DialerEngine
from coastal_crm.infrastructure.storage import models
from coastal_crm.infrastructure.storage.database import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from coastal_crm.infrastructure.storage.repository import DialerRepository
from coastal_crm.infrastructure.telephony.simulated_provider import SimulatedTelephonyProvider


class SeededCampaign:
    def __init__(self, campaign_id: str, contact_ids: List[str], lead_ids: List[str], phones: List[str]):
        self.id = campaign_id
        self.contact_ids = contact_ids
        self.lead_ids = lead_ids
        self.phones = phones


def seed_campaign(
    factory,
    contacts: int = 3,
    status: str = "ACTIVE",
    caller_id: Optional[str] = None,
    name: str = "Q3 Restaurant Outreach"
) -> SeededCampaign:
    """Insert a campaign with `contacts` PENDING contacts, oldest first"""
    base = datetime(2024, 1, 1, 9, 0, 0)
    with session_scope(factory) as db:
        campaign = models.Campaign(name=name, status=status, caller_id=caller_id)
        db.add(campaign)
        db.flush()

        contact_ids, lead_ids, phones = [], [], []
        for i in range(contacts):
            phone = f"+1555010{i:04d}"
            lead = models.Lead(
                business_name=f"Harbor Diner {i + 1}",
                contact_name=f"Owner {i + 1}",
                phone=phone,
                total_debt_est=45000.0 + i * 1000,
                industry="Restaurant",
                score=70 + i,
            )
            db.add(lead)
            db.flush()

            contact = models.CampaignContact(
                campaign_id=campaign.id,
                lead_id=lead.id,
                created_at=base + timedelta(minutes=i),
            )
            db.add(contact)
            db.flush()

            contact_ids.append(contact.id)
            lead_ids.append(lead.id)
            phones.append(phone)

        return SeededCampaign(campaign.id, contact_ids, lead_ids, phones)


def get_row(factory, model, row_id):
    with session_scope(factory) as db:
        row = db.get(model, row_id)
        if row is not None:
            db.expunge(row)
        return row


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return DialerRepository(session_factory)


@pytest.fixture
def campaign(session_factory):
    return seed_campaign(session_factory)


@pytest.fixture
def provider():
    return SimulatedTelephonyProvider(auto_progress=False, retention_seconds=None)


@pytest_asyncio.fixture
async def dialer(session_factory, provider):
    engine = DialerEngine(
        session_factory=session_factory,
        provider=provider,
        policy=DispositionPolicy(),
        default_caller_id="+18005550000",
    )
    await engine.initialize()
    yield engine
    await engine.shutdown()
