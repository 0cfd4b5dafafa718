"""
Dialer Engine
Wires the session manager, contact advancement and call coordinator together
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from coastal_crm.core.config import ConfigManager, Settings, get_settings
from coastal_crm.domain.interfaces.telephony_provider import ProviderCallStatus, TelephonyProvider
from coastal_crm.domain.models.campaign import CampaignProgress
from coastal_crm.domain.models.disposition import DispositionPolicy
from coastal_crm.domain.services.call_coordinator import CallCoordinator
from coastal_crm.domain.services.contact_advancement import ContactAdvancer
from coastal_crm.domain.services.dialer_session_manager import DialerSessionManager
from coastal_crm.infrastructure.storage.database import get_session_factory
from coastal_crm.infrastructure.storage.repository import DialerRepository
from coastal_crm.infrastructure.telephony.factory import TelephonyFactory

logger = logging.getLogger(__name__)


class DialerEngine:
    """
    Singleton dialer core.

    Holds the one session registry and SID index of the process. Components
    are exposed as attributes:
        engine.sessions     - DialerSessionManager
        engine.advancer     - ContactAdvancer
        engine.coordinator  - CallCoordinator
    """

    _instance: Optional["DialerEngine"] = None
    _lock = asyncio.Lock()

    def __init__(
        self,
        session_factory: sessionmaker,
        provider: TelephonyProvider,
        policy: Optional[DispositionPolicy] = None,
        default_caller_id: Optional[str] = None
    ):
        self.repository = DialerRepository(session_factory)
        self.policy = policy or DispositionPolicy()
        self.provider = provider

        self.sessions = DialerSessionManager(self.repository)
        self.advancer = ContactAdvancer(self.sessions, self.repository, self.policy)
        self.coordinator = CallCoordinator(
            self.sessions,
            self.repository,
            provider,
            self.policy,
            default_caller_id=default_caller_id,
        )
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        settings: Optional[Settings] = None,
        config: Optional[ConfigManager] = None,
        session_factory: Optional[sessionmaker] = None
    ) -> "DialerEngine":
        """Build an engine from Settings and the YAML configuration"""
        settings = settings or get_settings()
        config = config or ConfigManager(env=settings.environment)

        provider_name = settings.telephony_provider
        provider = TelephonyFactory.create(
            provider_name,
            config.get(f"providers.telephony.{provider_name}", {}) or {}
        )

        return cls(
            session_factory=session_factory or get_session_factory(),
            provider=provider,
            policy=config.get_disposition_policy(),
            default_caller_id=settings.default_caller_id,
        )

    @classmethod
    async def get_instance(cls) -> "DialerEngine":
        """Get singleton instance (async factory pattern)"""
        if cls._instance is None:
            async with cls._lock:
                if cls._instance is None:
                    instance = cls.from_config()
                    await instance.initialize()
                    cls._instance = instance
        return cls._instance

    @classmethod
    async def reset(cls) -> None:
        """Shut down and drop the singleton"""
        async with cls._lock:
            if cls._instance is not None:
                await cls._instance.shutdown()
                cls._instance = None

    async def initialize(self) -> None:
        """Initialize the provider and subscribe to its status changes"""
        if self._initialized:
            return
        await self.provider.initialize()
        self.provider.set_status_callback(self._on_provider_status)
        self._initialized = True
        logger.info(
            f"Dialer engine ready (provider={self.provider.name}, "
            f"max_attempts={self.policy.max_attempts})"
        )

    async def shutdown(self) -> None:
        self.provider.set_status_callback(None)
        await self.provider.cleanup()
        self._initialized = False
        logger.info(f"Dialer engine stopped ({self.sessions.active_session_count()} sessions were active)")

    def get_campaign_progress(self, campaign_id: str) -> CampaignProgress:
        return self.repository.get_campaign_progress(campaign_id)

    def get_stats(self) -> dict:
        stats = self.sessions.get_stats()
        stats["provider"] = self.provider.name
        return stats

    async def _on_provider_status(self, sid: str, status: ProviderCallStatus) -> None:
        await self.coordinator.apply_status_event(sid, status)
