"""
Provider Validation Module
Validates telephony, database and auth configuration on startup
"""
import os
import logging
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str


class ProviderValidator:
    """
    Validates provider configurations at startup.

    Ensures the credentials the selected telephony provider and the auth
    backend need are present before the application accepts requests.
    """

    # Required environment variables by telephony provider
    TELEPHONY_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "simulated": [],
        "vonage": [
            ("VONAGE_APP_ID", "Vonage application ID"),
            ("VONAGE_PRIVATE_KEY_PATH", "Vonage application private key"),
            ("VONAGE_FROM_NUMBER", "Vonage caller ID"),
        ],
    }

    REQUIRED_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "auth": [
            ("SUPABASE_URL", "Supabase auth"),
            ("SUPABASE_SERVICE_KEY", "Supabase auth"),
        ],
    }

    # Optional but recommended
    OPTIONAL_ENV_VARS: Dict[str, List[Tuple[str, str]]] = {
        "database": [("DATABASE_URL", "Database URL (local SQLite file is used otherwise)")],
        "telephony": [("API_BASE_URL", "Public base URL for provider webhooks")],
    }

    def __init__(self, telephony_provider: str = "simulated", strict: bool = False):
        """
        Initialize validator.

        Args:
            telephony_provider: Name of the active telephony provider
            strict: If True, treat warnings as errors
        """
        self.telephony_provider = (telephony_provider or "").lower()
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate all provider configurations.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        if self.telephony_provider not in self.TELEPHONY_ENV_VARS:
            self._add_error("telephony", "TELEPHONY_PROVIDER",
                f"Unknown telephony provider '{self.telephony_provider}'")
        elif self.telephony_provider == "simulated":
            self._add_warning("telephony", "TELEPHONY_PROVIDER",
                "Simulated telephony provider is active, no real calls will be placed")

        required = dict(self.REQUIRED_ENV_VARS)
        required["telephony"] = self.TELEPHONY_ENV_VARS.get(self.telephony_provider, [])

        for provider, vars_list in required.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add_error(provider, env_var, f"{description} requires {env_var} to be set")
                else:
                    self._add_success(provider, env_var, f"{description} configured")

        for provider, vars_list in self.OPTIONAL_ENV_VARS.items():
            for env_var, description in vars_list:
                if not os.getenv(env_var):
                    self._add_warning(provider, env_var, f"{description} not configured")
                else:
                    self._add_success(provider, env_var, f"{description} configured")

        all_valid = all(r.is_valid for r in self.results)
        return all_valid, self.results

    def _add_success(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=True,
            message=message
        ))

    def _add_error(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=False,
            message=message
        ))

    def _add_warning(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}"
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid]
        warnings = [r for r in self.results if r.is_valid and "WARNING" in r.message]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Provider configuration validated:")
            for r in successes:
                logger.info(f"  [{r.provider}] {r.message}")

        for r in warnings:
            logger.warning(f"  [{r.provider}] {r.message}")

        if errors:
            logger.error("Provider configuration errors:")
            for r in errors:
                logger.error(f"  [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid]
        if not errors:
            return None

        lines = ["Provider configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(telephony_provider: str = "simulated", strict: bool = False) -> None:
    """
    Validate all providers at startup.

    Args:
        telephony_provider: Name of the active telephony provider
        strict: If True, fail on warnings too

    Raises:
        RuntimeError: If required configuration is missing
    """
    validator = ProviderValidator(telephony_provider=telephony_provider, strict=strict)
    all_valid, results = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All provider configurations validated successfully")
