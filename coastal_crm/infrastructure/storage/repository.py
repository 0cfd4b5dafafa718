"""
Dialer Repository
Persistence boundary for the dialer: campaigns, campaign contacts, leads and call records
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, sessionmaker

from coastal_crm.domain.errors import CallNotFoundError, ContactNotFoundError, InvalidStateError
from coastal_crm.domain.models.call import CallDirection, CallRecord, CallStatus
from coastal_crm.domain.models.campaign import (
    Campaign,
    CampaignContact,
    CampaignProgress,
    ContactStatus,
    DialerContact,
)
from coastal_crm.domain.models.disposition import DispositionPolicy
from coastal_crm.infrastructure.storage import models
from coastal_crm.infrastructure.storage.database import session_scope

logger = logging.getLogger(__name__)


class DialerRepository:
    """
    Reads and writes the rows the dialer core depends on.

    Every public method runs in its own transaction and returns detached
    pydantic snapshots, never live ORM objects.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ========== Campaigns ==========

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        with session_scope(self._session_factory) as db:
            row = db.get(models.Campaign, campaign_id)
            return Campaign.model_validate(row) if row else None

    def get_campaign_progress(self, campaign_id: str) -> CampaignProgress:
        """Contact counts per status, computed from the rows on every call"""
        with session_scope(self._session_factory) as db:
            rows = (
                db.query(models.CampaignContact.status, func.count(models.CampaignContact.id))
                .filter(models.CampaignContact.campaign_id == campaign_id)
                .group_by(models.CampaignContact.status)
                .all()
            )

        by_status = {status.value: 0 for status in ContactStatus}
        for status, count in rows:
            by_status[status] = count

        return CampaignProgress(
            campaign_id=campaign_id,
            total=sum(by_status.values()),
            by_status=by_status
        )

    # ========== Campaign contacts ==========

    def get_contact(self, contact_id: str) -> Optional[CampaignContact]:
        with session_scope(self._session_factory) as db:
            row = db.get(models.CampaignContact, contact_id)
            return CampaignContact.model_validate(row) if row else None

    def get_dialer_contact(self, contact_id: str) -> Optional[DialerContact]:
        with session_scope(self._session_factory) as db:
            row = db.get(models.CampaignContact, contact_id)
            return self._to_dialer_contact(row) if row else None

    def claim_next_contact(
        self,
        campaign_id: str,
        max_attempts: int,
        now: Optional[datetime] = None
    ) -> Optional[DialerContact]:
        """
        Pick the next dialable contact and mark it DIALING in one transaction.

        Eligible: PENDING, fewer than max_attempts attempts, and no retry time
        in the future. Order: fewest attempts, then oldest, then id.

        Returns:
            The claimed contact, or None if the campaign has nothing left to dial
        """
        now = now or datetime.utcnow()

        with session_scope(self._session_factory) as db:
            row = (
                db.query(models.CampaignContact)
                .filter(
                    models.CampaignContact.campaign_id == campaign_id,
                    models.CampaignContact.status == ContactStatus.PENDING.value,
                    models.CampaignContact.attempt_count < max_attempts,
                    or_(
                        models.CampaignContact.next_eligible_at.is_(None),
                        models.CampaignContact.next_eligible_at <= now,
                    ),
                )
                .order_by(
                    models.CampaignContact.attempt_count.asc(),
                    models.CampaignContact.created_at.asc(),
                    models.CampaignContact.id.asc(),
                )
                .with_for_update()
                .first()
            )

            if row is None:
                return None

            row.status = ContactStatus.DIALING.value
            row.attempt_count = (row.attempt_count or 0) + 1
            row.last_attempt = now
            row.next_eligible_at = None
            db.flush()

            return self._to_dialer_contact(row)

    def set_contact_status(self, contact_id: str, status: ContactStatus) -> CampaignContact:
        with session_scope(self._session_factory) as db:
            row = db.get(models.CampaignContact, contact_id)
            if row is None:
                raise ContactNotFoundError(contact_id)
            row.status = ContactStatus(status).value
            db.flush()
            return CampaignContact.model_validate(row)

    # ========== Calls ==========

    def create_call(
        self,
        contact_id: str,
        agent_id: str,
        phone_number: str,
        external_sid: str,
        started_at: Optional[datetime] = None
    ) -> CallRecord:
        """Insert an OUTBOUND call in INITIATED state for a campaign contact"""
        with session_scope(self._session_factory) as db:
            contact = db.get(models.CampaignContact, contact_id)
            if contact is None:
                raise ContactNotFoundError(contact_id)

            row = models.Call(
                campaign_id=contact.campaign_id,
                lead_id=contact.lead_id,
                campaign_contact_id=contact.id,
                agent_id=agent_id,
                direction=CallDirection.OUTBOUND.value,
                phone_number=phone_number,
                external_sid=external_sid,
                status=CallStatus.INITIATED.value,
                started_at=started_at or datetime.utcnow(),
            )
            db.add(row)
            db.flush()
            logger.debug(f"Created call record: {row.id} (sid={external_sid})")
            return CallRecord.model_validate(row)

    def has_open_call(self, contact_id: str) -> bool:
        """True if the contact has a call that has not received its disposition"""
        with session_scope(self._session_factory) as db:
            open_calls = (
                db.query(func.count(models.Call.id))
                .filter(
                    models.Call.campaign_contact_id == contact_id,
                    models.Call.status != CallStatus.COMPLETED.value,
                )
                .scalar()
            )
            return bool(open_calls)

    def get_call(self, call_id: str) -> Optional[CallRecord]:
        with session_scope(self._session_factory) as db:
            row = db.get(models.Call, call_id)
            return CallRecord.model_validate(row) if row else None

    def update_call(self, call_id: str, **fields: Any) -> CallRecord:
        """Apply provider progress to a call that has not been finalized"""
        with session_scope(self._session_factory) as db:
            row = db.get(models.Call, call_id)
            if row is None:
                raise CallNotFoundError(call_id)
            if row.status == CallStatus.COMPLETED.value:
                raise InvalidStateError(f"Call {call_id} is already completed")

            for key, value in fields.items():
                if hasattr(row, key):
                    setattr(row, key, value.value if isinstance(value, CallStatus) else value)
            db.flush()
            return CallRecord.model_validate(row)

    def finalize_call(
        self,
        call_id: str,
        disposition: str,
        notes: Optional[str],
        policy: DispositionPolicy,
        next_follow_up: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Close out a call with the agent's disposition.

        In one transaction: the call becomes COMPLETED, the campaign contact
        moves per the disposition policy and the lead's pipeline fields are
        updated.

        Returns:
            {"call": CallRecord, "contact": CampaignContact | None}

        Raises:
            CallNotFoundError: Unknown call id
            InvalidStateError: Call already has a disposition
        """
        now = now or datetime.utcnow()

        with session_scope(self._session_factory) as db:
            call = db.get(models.Call, call_id)
            if call is None:
                raise CallNotFoundError(call_id)
            if call.status == CallStatus.COMPLETED.value:
                raise InvalidStateError(f"Call {call_id} already has disposition {call.disposition}")

            call.disposition = disposition
            call.notes = notes
            call.status = CallStatus.COMPLETED.value
            call.ended_at = call.ended_at or now

            contact = self._find_contact_for_call(db, call)
            if contact is not None:
                update = policy.contact_update(
                    disposition,
                    attempt_count=contact.attempt_count or 0,
                    next_follow_up=next_follow_up,
                    now=now
                )
                contact.status = update.status.value
                contact.next_eligible_at = update.next_eligible_at
                logger.info(
                    f"Contact {contact.id} -> {update.status.value} ({update.reason})"
                )
            else:
                logger.warning(f"No campaign contact found for call {call_id}")

            if call.lead_id:
                lead = db.get(models.Lead, call.lead_id)
                if lead is not None:
                    lead_status = policy.lead_status_for(disposition)
                    if lead_status is not None:
                        lead.status = lead_status.value
                    lead.last_contacted_at = now
                    if next_follow_up is not None:
                        lead.next_follow_up_at = next_follow_up

            db.flush()
            return {
                "call": CallRecord.model_validate(call),
                "contact": CampaignContact.model_validate(contact) if contact else None,
            }

    # ========== Helpers ==========

    def _find_contact_for_call(self, db: Session, call: models.Call) -> Optional[models.CampaignContact]:
        if call.campaign_contact_id:
            contact = db.get(models.CampaignContact, call.campaign_contact_id)
            if contact is not None:
                return contact

        if call.campaign_id and call.lead_id:
            return (
                db.query(models.CampaignContact)
                .filter(
                    models.CampaignContact.campaign_id == call.campaign_id,
                    models.CampaignContact.lead_id == call.lead_id,
                )
                .first()
            )
        return None

    def _to_dialer_contact(self, row: models.CampaignContact) -> DialerContact:
        lead = row.lead
        return DialerContact(
            id=row.id,
            lead_id=row.lead_id,
            business_name=lead.business_name,
            contact_name=lead.contact_name,
            phone=lead.phone,
            total_debt_est=lead.total_debt_est,
            industry=lead.industry,
            score=lead.score,
            attempts=row.attempt_count or 0,
            priority=row.priority or 0,
        )
