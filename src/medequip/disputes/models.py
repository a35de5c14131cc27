"""
Dispute Models
"""

from enum import Enum


class DisputeStatus(str, Enum):
    """open -> escalated -> resolved; resolved is terminal"""

    OPEN = "open"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class DisputeType(str, Enum):
    QUALITY = "quality"
    PRICING = "pricing"
    TIMELINE = "timeline"
    OTHER = "other"


class Resolution(str, Enum):
    """
    Arbitration outcome

    RE_ASSIGN records the decision only; moving the request to another
    provider is a separate reassign_provider call.
    """

    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    DISMISS = "dismiss"
    RE_ASSIGN = "re_assign"


REFUND_RESOLUTIONS = frozenset({Resolution.REFUND, Resolution.PARTIAL_REFUND})
