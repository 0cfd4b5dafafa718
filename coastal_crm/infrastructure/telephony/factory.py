"""
Telephony Provider Factory
"""
from typing import Callable, Dict

from coastal_crm.domain.interfaces.telephony_provider import TelephonyProvider


def _create_simulated(config: dict) -> TelephonyProvider:
    from coastal_crm.infrastructure.telephony.simulated_provider import SimulatedTelephonyProvider
    return SimulatedTelephonyProvider(
        auto_progress=config.get("auto_progress", True),
        retention_seconds=config.get("retention_seconds", 5.0),
        reject_numbers=config.get("reject_numbers"),
    )


def _create_vonage(config: dict) -> TelephonyProvider:
    from coastal_crm.infrastructure.telephony.vonage_provider import VonageTelephonyProvider
    return VonageTelephonyProvider()


class TelephonyFactory:
    """
    Factory for creating Telephony provider instances.

    Supports switching between the simulated carrier and Vonage via
    configuration without code changes. Provider modules are imported on
    demand so the Vonage SDK is only loaded when it is selected.
    """

    _providers: Dict[str, Callable[[dict], TelephonyProvider]] = {
        "simulated": _create_simulated,
        "vonage": _create_vonage,
    }

    @classmethod
    def create(cls, provider_name: str, config: dict = None) -> TelephonyProvider:
        """Create Telephony provider instance"""
        config = config or {}
        builder = cls._providers.get((provider_name or "").lower())
        if builder is None:
            available = ", ".join(cls._providers.keys())
            raise ValueError(f"Unknown Telephony provider: {provider_name}. Available: {available}")

        return builder(config)

    @classmethod
    def register(cls, name: str, builder: Callable[[dict], TelephonyProvider]) -> None:
        """Register a provider"""
        cls._providers[name.lower()] = builder

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())
