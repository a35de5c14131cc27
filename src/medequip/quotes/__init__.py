"""
Quotes - priced offers against service requests

At most one quote per request is ever accepted; accepting it rejects its
pending siblings and moves the request to accepted in one transaction.
"""

from medequip.quotes.invariants import QUOTE_TRANSITIONS, win_rate
from medequip.quotes.models import QuoteStats, QuoteStatus
from medequip.quotes.projections import QuoteRegistry

__all__ = [
    "QUOTE_TRANSITIONS",
    "QuoteRegistry",
    "QuoteStats",
    "QuoteStatus",
    "win_rate",
]
