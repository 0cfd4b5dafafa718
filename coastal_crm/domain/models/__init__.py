"""Domain models"""

# Call models
from .call import (
    CallStatus,
    CallDirection,
    CallRecord,
)

# Campaign models
from .campaign import (
    CampaignStatus,
    DialerMode,
    ContactStatus,
    Campaign,
    CampaignContact,
    DialerContact,
    CampaignProgress,
)

from .lead import LeadStatus

# Dialer models
from .dialer_session import (
    SessionStatus,
    SessionStats,
    DialerSession,
)

from .disposition import (
    Disposition,
    ContactOutcome,
    DispositionRule,
    DispositionPolicy,
)

__all__ = [
    # Call models
    "CallStatus",
    "CallDirection",
    "CallRecord",
    # Campaign models
    "CampaignStatus",
    "DialerMode",
    "ContactStatus",
    "Campaign",
    "CampaignContact",
    "DialerContact",
    "CampaignProgress",
    "LeadStatus",
    # Dialer models
    "SessionStatus",
    "SessionStats",
    "DialerSession",
    "Disposition",
    "ContactOutcome",
    "DispositionRule",
    "DispositionPolicy",
]
