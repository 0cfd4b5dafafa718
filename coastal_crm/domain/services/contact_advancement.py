"""
Contact Advancement
Selects the next campaign contact for a dialer session
"""
import logging
from datetime import datetime
from typing import Optional

from coastal_crm.domain.errors import ContactNotFoundError, InvalidStateError, ValidationError
from coastal_crm.domain.models.campaign import CampaignContact, ContactStatus, DialerContact
from coastal_crm.domain.models.disposition import DispositionPolicy
from coastal_crm.domain.services.dialer_session_manager import DialerSessionManager
from coastal_crm.infrastructure.storage.repository import DialerRepository

logger = logging.getLogger(__name__)


class ContactAdvancer:
    """
    Moves a session through its campaign's contact list.

    Contact selection and the session update happen under the session's
    lock, so readers of the session never see a contact that is DIALING in
    the database but not yet current in the session.
    """

    def __init__(
        self,
        sessions: DialerSessionManager,
        repository: DialerRepository,
        policy: DispositionPolicy
    ):
        self._sessions = sessions
        self._repository = repository
        self._policy = policy

    async def get_next_contact(
        self,
        session_id: str,
        now: Optional[datetime] = None
    ) -> Optional[DialerContact]:
        """
        Claim the next eligible contact for the session.

        Returns:
            The contact, now DIALING; None when the session is stopped or the
            campaign has nothing left to dial (the session is then stopped)

        Raises:
            SessionNotFoundError: Unknown session id
            InvalidStateError: The session has a call in flight
        """
        async with self._sessions.lock(session_id) as session:
            if not session.is_active:
                logger.debug(f"Session {session_id} is stopped, no next contact")
                return None

            if session.has_active_call:
                logger.warning(f"Rejected next contact for {session_id}: call {session.active_call_id} is active")
                raise InvalidStateError(
                    f"Session {session_id} has an active call; submit a disposition first"
                )

            contact = self._repository.claim_next_contact(
                session.campaign_id,
                max_attempts=self._policy.max_attempts,
                now=now
            )

            if contact is None:
                session.current_contact_id = None
                session.stop()
                logger.info(f"Campaign {session.campaign_id} exhausted, stopped session {session_id}")
                return None

            session.current_contact_id = contact.id
            logger.info(
                f"Session {session_id} -> contact {contact.id} "
                f"({contact.business_name}, attempt {contact.attempts})"
            )
            return contact

    async def skip_contact(self, session_id: str, contact_id: str) -> CampaignContact:
        """
        Take a DIALING contact out of the rotation without calling it.

        Raises:
            SessionNotFoundError: Unknown session id
            ContactNotFoundError: Unknown contact id
            InvalidStateError: Call in flight, or contact not DIALING in this campaign
        """
        if not contact_id:
            raise ValidationError("contact_id is required")

        async with self._sessions.lock(session_id) as session:
            if session.has_active_call:
                raise InvalidStateError(
                    f"Session {session_id} has an active call; submit a disposition first"
                )

            contact = self._repository.get_contact(contact_id)
            if contact is None:
                raise ContactNotFoundError(contact_id)
            if contact.campaign_id != session.campaign_id:
                raise InvalidStateError(
                    f"Contact {contact_id} does not belong to campaign {session.campaign_id}"
                )
            if contact.status != ContactStatus.DIALING:
                raise InvalidStateError(
                    f"Contact {contact_id} is {contact.status.value}, only DIALING contacts can be skipped"
                )

            updated = self._repository.set_contact_status(contact_id, ContactStatus.SKIPPED)
            if session.current_contact_id == contact_id:
                session.current_contact_id = None

            logger.info(f"Session {session_id} skipped contact {contact_id}")
            return updated
