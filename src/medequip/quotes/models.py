"""
Quote Models
"""

from enum import Enum

from pydantic import BaseModel, Field


class QuoteStatus(str, Enum):
    """pending until accepted, rejected or expired; the last three are terminal"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class QuoteStats(BaseModel):
    """Provider dashboard counters"""

    pending_count: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    win_rate: int = Field(
        default=-1, description="Accepted share of decided quotes in percent, -1 if none decided"
    )
