"""
Providers - verified service companies and their ratings

A provider organization registers one provider record; platform admins
verify, reject, suspend and reactivate it. Only active and verified
providers may quote.
"""

from medequip.providers.invariants import is_quotable, updated_average
from medequip.providers.models import ProviderStatus, VerificationStatus
from medequip.providers.projections import ProviderRegistry

__all__ = [
    "ProviderRegistry",
    "ProviderStatus",
    "VerificationStatus",
    "is_quotable",
    "updated_average",
]
