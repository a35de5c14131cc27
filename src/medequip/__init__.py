"""
MedEquip - Medical equipment service marketplace workflow engine

Hospitals file service requests for their equipment, verified providers
quote on them, the hospital accepts one quote, the provider does the
work, and platform admins arbitrate when things go wrong. Every mutation
is an event in an append-only log with a matching tenant-scoped audit
entry.

Fun fact: Vietnamese hospitals run thousands of imported devices whose
original vendors are often half a world away, so independent service
providers keep much of the equipment running.
"""

from medequip.marketplace import Marketplace

__version__ = "0.1.0"
__all__ = ["Marketplace", "__version__"]
