"""
Dialer Session Manager
Process-wide registry of in-memory dialer sessions with per-session locking
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from coastal_crm.domain.errors import InvalidCampaignError, SessionNotFoundError, ValidationError
from coastal_crm.domain.models.campaign import CampaignStatus
from coastal_crm.domain.models.dialer_session import DialerSession, SessionStatus
from coastal_crm.infrastructure.storage.repository import DialerRepository

logger = logging.getLogger(__name__)


class DialerSessionManager:
    """
    Owns every DialerSession in the process.

    The registry starts empty when the process starts, gains an entry per
    start_session and is never persisted; a restart loses all sessions.

    All mutations of a session happen inside `lock(session_id)`, which
    serializes work on that session only. The registry lock guards the
    dictionaries themselves and is never held across I/O.
    """

    # Stopped sessions without a call in flight are dropped after this long
    STOPPED_SESSION_TTL_SECONDS = 3600

    def __init__(self, repository: DialerRepository):
        self._repository = repository
        self._sessions: Dict[str, DialerSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    async def start_session(self, campaign_id: str, agent_id: str) -> DialerSession:
        """
        Create a new dialer session for an agent on an ACTIVE campaign

        Args:
            campaign_id: Campaign to dial
            agent_id: Authenticated user running the session

        Returns:
            Snapshot of the new session (active, no contact, no call)

        Raises:
            ValidationError: Missing identifiers
            InvalidCampaignError: Campaign missing or not ACTIVE
        """
        if not campaign_id:
            raise ValidationError("campaign_id is required")
        if not agent_id:
            raise ValidationError("agent_id is required")

        campaign = self._repository.get_campaign(campaign_id)
        if campaign is None:
            raise InvalidCampaignError(campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidCampaignError(campaign_id, reason=f"status is {campaign.status.value}")

        session = DialerSession(campaign_id=campaign_id, agent_id=agent_id)

        async with self._registry_lock:
            self._purge_stopped_sessions()
            self._sessions[session.id] = session
            self._locks[session.id] = asyncio.Lock()

        logger.info(f"Started dialer session {session.id} (campaign={campaign_id}, agent={agent_id})")
        return session.snapshot()

    def get_session(self, session_id: str) -> Optional[DialerSession]:
        """Snapshot of a session, or None if the id is unknown"""
        session = self._sessions.get(session_id)
        return session.snapshot() if session else None

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def stop_session(self, session_id: str) -> Optional[DialerSession]:
        """
        Stop a session.

        An active call is left alone: hanging up is a separate, explicit
        provider operation and the Call record is not touched.

        Returns:
            Snapshot of the stopped session, or None if the id is unknown
        """
        if not self.exists(session_id):
            return None

        try:
            async with self.lock(session_id) as session:
                session.stop()
                if session.active_call_id:
                    logger.info(f"Stopped dialer session {session_id} with call {session.active_call_id} still active")
                else:
                    logger.info(f"Stopped dialer session {session_id}")
                return session.snapshot()
        except SessionNotFoundError:
            # Dropped by the expiry sweep while waiting for the lock
            return None

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[DialerSession]:
        """
        Exclusive access to the live session.

        Usage:
            async with manager.lock(session_id) as session:
                session.current_contact_id = contact.id

        Raises:
            SessionNotFoundError: Unknown session id
        """
        session_lock = self._locks.get(session_id)
        if session_lock is None:
            raise SessionNotFoundError(session_id)

        async with session_lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            yield session

    def list_sessions(self, agent_id: Optional[str] = None) -> List[DialerSession]:
        """Snapshots of all sessions, optionally for one agent"""
        return [
            s.snapshot() for s in self._sessions.values()
            if agent_id is None or s.agent_id == agent_id
        ]

    def active_session_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.status == SessionStatus.ACTIVE)

    def get_stats(self) -> dict:
        """Registry statistics for health reporting"""
        return {
            "total_sessions": len(self._sessions),
            "active_sessions": self.active_session_count(),
            "sessions_with_active_call": sum(1 for s in self._sessions.values() if s.has_active_call),
        }

    def _purge_stopped_sessions(self) -> None:
        now = datetime.utcnow()
        expired = [
            session_id for session_id, s in self._sessions.items()
            if s.status == SessionStatus.STOPPED
            and not s.has_active_call
            and s.stopped_at is not None
            and (now - s.stopped_at).total_seconds() > self.STOPPED_SESSION_TTL_SECONDS
            and not self._locks[session_id].locked()
        ]
        for session_id in expired:
            del self._sessions[session_id]
            del self._locks[session_id]
            logger.debug(f"Dropped expired dialer session {session_id}")
