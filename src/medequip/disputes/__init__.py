"""
Disputes - escalation and platform arbitration

Either party of a request the provider took on can open a dispute; the
thread stays open to both until a platform admin resolves it.
"""

from medequip.disputes.invariants import DISPUTE_TRANSITIONS, render_resolution_notes
from medequip.disputes.models import DisputeStatus, DisputeType, Resolution
from medequip.disputes.projections import DisputeRegistry

__all__ = [
    "DISPUTE_TRANSITIONS",
    "DisputeRegistry",
    "DisputeStatus",
    "DisputeType",
    "Resolution",
    "render_resolution_notes",
]
