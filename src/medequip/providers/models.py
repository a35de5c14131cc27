"""
Provider Models
"""

from enum import Enum


class ProviderStatus(str, Enum):
    """Operational status of a provider record"""

    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class VerificationStatus(str, Enum):
    """Where the provider is in platform verification"""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    VERIFIED = "verified"
    REJECTED = "rejected"
