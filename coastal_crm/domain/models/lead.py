"""
Lead Domain Models
"""
from enum import Enum


class LeadStatus(str, Enum):
    """Pipeline status of a lead (owned by the CRM, updated on disposition)"""
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    CALLBACK = "CALLBACK"
    ENROLLED = "ENROLLED"
    LOST = "LOST"
    UNQUALIFIED = "UNQUALIFIED"
    DNC = "DNC"
