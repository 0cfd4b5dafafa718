"""
Dialer Errors
Typed failures raised by the dialer services and mapped to HTTP responses by the API layer
"""
from typing import Optional


class DialerError(Exception):
    """Base class for all dialer failures."""
    code = "dialer_error"

    def __init__(self, message: str = "Dialer operation failed"):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFoundError(DialerError):
    """Referenced session, call, campaign or contact does not exist."""
    code = "not_found"


class SessionNotFoundError(NotFoundError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Dialer session not found: {session_id}")


class CallNotFoundError(NotFoundError):
    code = "call_not_found"

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call not found: {call_id}")


class ContactNotFoundError(NotFoundError):
    code = "contact_not_found"

    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Campaign contact not found: {contact_id}")


class InvalidCampaignError(NotFoundError):
    """Campaign is missing or not ACTIVE."""
    code = "invalid_campaign"

    def __init__(self, campaign_id: str, reason: str = "not found"):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign {campaign_id} cannot be dialed: {reason}")


class InvalidStateError(DialerError):
    """Operation is not legal in the current session or call state."""
    code = "invalid_state"


class ValidationError(DialerError):
    """Malformed input, e.g. a missing identifier or an unknown disposition."""
    code = "validation_error"


class TelephonyError(DialerError):
    """The telephony provider failed to carry out a request."""
    code = "telephony_error"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)
