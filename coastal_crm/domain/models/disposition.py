"""
Disposition Policy
Single table deciding what an agent's disposition means for the campaign contact and the lead
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
from enum import Enum

from coastal_crm.domain.models.campaign import ContactStatus
from coastal_crm.domain.models.lead import LeadStatus


class Disposition(str, Enum):
    """Outcome codes offered on the disposition form"""
    INTERESTED = "INTERESTED"
    NOT_INTERESTED = "NOT_INTERESTED"
    CALLBACK = "CALLBACK"
    NOT_QUALIFIED = "NOT_QUALIFIED"
    WRONG_NUMBER = "WRONG_NUMBER"
    VOICEMAIL = "VOICEMAIL"
    NO_ANSWER = "NO_ANSWER"
    BUSY = "BUSY"
    FAILED = "FAILED"
    DNC = "DNC"
    ENROLLED = "ENROLLED"


class ContactOutcome(str, Enum):
    """What a disposition does to the campaign contact"""
    TERMINAL = "terminal"  # contact is done
    RETRY = "retry"        # contact goes back to the pool


class DispositionRule(BaseModel):
    outcome: ContactOutcome
    lead_status: Optional[LeadStatus] = None


# Module-level defaults, overridable from config (dialer.dispositions)
DEFAULT_DISPOSITION_RULES: Dict[str, DispositionRule] = {
    Disposition.ENROLLED.value: DispositionRule(outcome=ContactOutcome.TERMINAL, lead_status=LeadStatus.ENROLLED),
    Disposition.NOT_INTERESTED.value: DispositionRule(outcome=ContactOutcome.TERMINAL, lead_status=LeadStatus.LOST),
    Disposition.DNC.value: DispositionRule(outcome=ContactOutcome.TERMINAL, lead_status=LeadStatus.DNC),
    Disposition.NOT_QUALIFIED.value: DispositionRule(outcome=ContactOutcome.TERMINAL, lead_status=LeadStatus.UNQUALIFIED),
    Disposition.WRONG_NUMBER.value: DispositionRule(outcome=ContactOutcome.TERMINAL),
    Disposition.INTERESTED.value: DispositionRule(outcome=ContactOutcome.TERMINAL, lead_status=LeadStatus.QUALIFIED),
    Disposition.CALLBACK.value: DispositionRule(outcome=ContactOutcome.RETRY, lead_status=LeadStatus.CALLBACK),
    Disposition.NO_ANSWER.value: DispositionRule(outcome=ContactOutcome.RETRY),
    Disposition.VOICEMAIL.value: DispositionRule(outcome=ContactOutcome.RETRY),
    Disposition.BUSY.value: DispositionRule(outcome=ContactOutcome.RETRY),
    Disposition.FAILED.value: DispositionRule(outcome=ContactOutcome.RETRY),
}

MAX_ATTEMPTS = 3
RETRY_DELAY_MINUTES = 0


class ContactUpdate(BaseModel):
    """Result of applying a disposition to a contact"""
    status: ContactStatus
    next_eligible_at: Optional[datetime] = None
    reason: str


class DispositionPolicy(BaseModel):
    """
    Authoritative disposition table plus the retry policy.

    Built from configuration so the terminal/retryable split lives in one
    place instead of being repeated at every call site.
    """

    rules: Dict[str, DispositionRule] = Field(default_factory=lambda: dict(DEFAULT_DISPOSITION_RULES))
    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1)
    retry_delay_minutes: int = Field(default=RETRY_DELAY_MINUTES, ge=0)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DispositionPolicy":
        """
        Build from the `dialer` config section.

        Entries under `dispositions` are merged over the defaults, e.g.
            dispositions:
              CALLBACK: {outcome: retry, lead_status: CALLBACK}
        """
        data = data or {}
        rules = dict(DEFAULT_DISPOSITION_RULES)
        for code, rule in (data.get("dispositions") or {}).items():
            rules[str(code).upper()] = DispositionRule(**rule)

        return cls(
            rules=rules,
            max_attempts=data.get("max_attempts", MAX_ATTEMPTS),
            retry_delay_minutes=data.get("retry_delay_minutes", RETRY_DELAY_MINUTES),
        )

    def normalize(self, disposition: str) -> Optional[str]:
        """Canonical code for a disposition, or None if it is not in the table"""
        code = (disposition or "").strip().upper()
        return code if code in self.rules else None

    def is_known(self, disposition: str) -> bool:
        return self.normalize(disposition) is not None

    def is_terminal(self, disposition: str) -> bool:
        code = self.normalize(disposition)
        return code is not None and self.rules[code].outcome == ContactOutcome.TERMINAL

    def lead_status_for(self, disposition: str) -> Optional[LeadStatus]:
        code = self.normalize(disposition)
        return self.rules[code].lead_status if code else None

    def contact_update(
        self,
        disposition: str,
        attempt_count: int,
        next_follow_up: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> ContactUpdate:
        """
        Decide the contact's next status.

        Returns:
            ContactUpdate with the new status and, for retries, the earliest
            time the contact may be dialed again
        """
        code = self.normalize(disposition)
        if code is None:
            raise ValueError(f"Unknown disposition: {disposition}")

        if self.rules[code].outcome == ContactOutcome.TERMINAL:
            return ContactUpdate(status=ContactStatus.COMPLETED, reason=f"terminal_{code.lower()}")

        if attempt_count >= self.max_attempts:
            return ContactUpdate(status=ContactStatus.FAILED, reason="max_attempts_reached")

        now = now or datetime.utcnow()
        if next_follow_up is not None:
            eligible_at = next_follow_up
        elif self.retry_delay_minutes:
            eligible_at = now + timedelta(minutes=self.retry_delay_minutes)
        else:
            eligible_at = None

        return ContactUpdate(
            status=ContactStatus.PENDING,
            next_eligible_at=eligible_at,
            reason=f"retrying_{code.lower()}"
        )
