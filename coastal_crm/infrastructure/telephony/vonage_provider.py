"""
Vonage Telephony Provider
Handles outbound call origination via the Vonage Voice API
"""
import os
import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from vonage import Auth, Vonage
from vonage_voice import CreateCallRequest

from coastal_crm.domain.errors import TelephonyError
from coastal_crm.domain.interfaces.telephony_provider import (
    ProviderCall,
    ProviderCallStatus,
    StatusCallback,
    TelephonyProvider,
    normalize_status,
)

logger = logging.getLogger(__name__)


class VonageTelephonyProvider(TelephonyProvider):
    """
    Vonage Voice API client for outbound call origination.

    Responsibilities:
    - Place outbound calls via the Voice API
    - Point answer/event webhooks at this service
    - Hang up and look up calls by UUID
    - Hold and mute the called leg

    Status changes arrive asynchronously on /api/v1/webhooks/telephony/event,
    so the registered status callback is not driven from here.

    Requirements:
    - VONAGE_APP_ID and VONAGE_PRIVATE_KEY_PATH environment variables
    """

    def __init__(self):
        self._client: Optional[Vonage] = None
        self._initialized = False
        self._status_callback: Optional[StatusCallback] = None

        # Configuration
        self._app_id = os.getenv("VONAGE_APP_ID")
        self._private_key_path = os.getenv("VONAGE_PRIVATE_KEY_PATH", "./config/private.key")
        self._default_from_number = os.getenv("VONAGE_FROM_NUMBER")
        self._api_base_url = os.getenv("API_BASE_URL", "http://localhost:8000")

    @property
    def name(self) -> str:
        return "vonage"

    async def initialize(self) -> None:
        """Initialize Vonage client."""
        if self._initialized:
            return

        if not self._app_id or not os.path.exists(self._private_key_path):
            raise TelephonyError(
                "Vonage is not configured: VONAGE_APP_ID and a private key file are required",
                provider=self.name
            )

        try:
            self._client = Vonage(
                Auth(application_id=self._app_id, private_key=self._private_key_path)
            )
            self._initialized = True
            logger.info("Vonage telephony provider initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Vonage client: {e}")
            raise TelephonyError(f"Vonage initialization failed: {e}", provider=self.name) from e

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        self._status_callback = callback

    async def place_call(
        self,
        to_number: str,
        from_number: Optional[str] = None
    ) -> ProviderCall:
        """
        Initiate an outbound call.

        Args:
            to_number: Destination phone number (any common format)
            from_number: Caller ID (optional, uses VONAGE_FROM_NUMBER if not provided)

        Returns:
            ProviderCall carrying the Vonage call UUID as sid
        """
        if not self._initialized:
            await self.initialize()

        to_number = self._normalize_number(to_number)
        from_number = from_number or self._default_from_number

        if not from_number:
            raise TelephonyError("No from_number provided and VONAGE_FROM_NUMBER not set", provider=self.name)

        answer_url = f"{self._api_base_url}/api/v1/webhooks/telephony/answer"
        event_url = f"{self._api_base_url}/api/v1/webhooks/telephony/event"

        logger.info(f"Initiating call: {from_number} -> {to_number}")

        try:
            response = self._client.voice.create_call(
                CreateCallRequest(
                    to=[{"type": "phone", "number": to_number.lstrip("+")}],
                    from_={"type": "phone", "number": self._normalize_number(from_number).lstrip("+")},
                    answer_url=[answer_url],
                    event_url=[event_url],
                )
            )
        except Exception as e:
            logger.error(f"Failed to initiate call to {to_number}: {e}", exc_info=True)
            raise TelephonyError(f"Vonage rejected call: {e}", provider=self.name) from e

        info = self._as_dict(response)
        call_uuid = info.get("uuid")
        if not call_uuid:
            raise TelephonyError("No UUID returned from Vonage", provider=self.name)

        logger.info(f"Call initiated: UUID={call_uuid}")

        return ProviderCall(
            sid=call_uuid,
            status=normalize_status(info.get("status")) or ProviderCallStatus.INITIATED,
            to=to_number,
            from_number=from_number,
        )

    async def end_call(self, sid: str) -> None:
        """Hang up an active call."""
        if not self._initialized:
            await self.initialize()

        try:
            self._client.voice.hangup(sid)
            logger.info(f"Call hung up: {sid}")
        except Exception as e:
            logger.error(f"Failed to hang up call {sid}: {e}")
            raise TelephonyError(f"Failed to hang up call {sid}: {e}", provider=self.name) from e

    # The called party's leg is the only one placed from here, so:
    # hold earmuffs and mutes that leg, mute only earmuffs it.

    async def hold_call(self, sid: str) -> None:
        await self._leg_controls(sid, "hold", "earmuff", "mute")

    async def resume_call(self, sid: str) -> None:
        await self._leg_controls(sid, "resume", "unearmuff", "unmute")

    async def mute_call(self, sid: str) -> None:
        await self._leg_controls(sid, "mute", "earmuff")

    async def unmute_call(self, sid: str) -> None:
        await self._leg_controls(sid, "unmute", "unearmuff")

    async def _leg_controls(self, sid: str, label: str, *actions: str) -> None:
        if not self._initialized:
            await self.initialize()

        try:
            for action in actions:
                getattr(self._client.voice, action)(sid)
            logger.info(f"Call {label}: {sid}")
        except Exception as e:
            logger.error(f"Failed to {label} call {sid}: {e}")
            raise TelephonyError(f"Failed to {label} call {sid}: {e}", provider=self.name) from e

    async def get_call_status(self, sid: str) -> ProviderCall:
        """Get status of a call."""
        if not self._initialized:
            await self.initialize()

        try:
            info = self._as_dict(self._client.voice.get_call(sid))
        except Exception as e:
            logger.error(f"Failed to get call status for {sid}: {e}")
            raise TelephonyError(f"Failed to get call status for {sid}: {e}", provider=self.name) from e

        to_leg = info.get("to") or {}
        from_leg = info.get("from_") or info.get("from") or {}

        return ProviderCall(
            sid=sid,
            status=normalize_status(info.get("status")) or ProviderCallStatus.INITIATED,
            duration=int(info.get("duration") or 0),
            to=str(to_leg.get("number", "")),
            from_number=from_leg.get("number"),
            started_at=self._parse_time(info.get("start_time")) or datetime.utcnow(),
        )

    def _as_dict(self, response: Any) -> Dict[str, Any]:
        if hasattr(response, "model_dump"):
            return response.model_dump()
        return dict(response or {})

    def _parse_time(self, value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            return value
        if isinstance(value, str) and value:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed.astimezone(timezone.utc).replace(tzinfo=None) if parsed.tzinfo else parsed
        return None

    def _normalize_number(self, number: str) -> str:
        """
        Normalize phone number to E.164 format.

        Args:
            number: Phone number in various formats

        Returns:
            Normalized number
        """
        # Remove common formatting characters
        number = number.replace(" ", "").replace("-", "").replace("(", "").replace(")", "").replace(".", "")

        # Add country code if missing (assuming US/Canada)
        if not number.startswith("+"):
            if len(number) == 10:
                number = "+1" + number
            elif len(number) == 11 and number.startswith("1"):
                number = "+" + number
            else:
                number = "+" + number

        return number

    async def cleanup(self) -> None:
        """Clean up resources."""
        self._client = None
        self._initialized = False
