"""
Kernel - Event sourcing, audit and error infrastructure

The kernel provides the machinery every domain module builds upon: the
append-only event store, the immutable audit trail, the error taxonomy,
the injected clock and the workflow policy.

Fun fact: Event sourcing was inspired by accountants - they never erase ledger
entries, they add correcting entries. Equipment service histories work the same way.
"""

from medequip.kernel.audit_trail import AuditDraft, AuditLogEntry, AuditTrail
from medequip.kernel.commands import CommandResult
from medequip.kernel.errors import (
    AccessDenied,
    ConcurrentModification,
    Conflict,
    ErrorKind,
    EventStoreError,
    Forbidden,
    InvalidInput,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    StreamVersionConflict,
    Unauthenticated,
    ValidationFailed,
)
from medequip.kernel.event_store import SQLiteEventStore
from medequip.kernel.events import Event
from medequip.kernel.ids import generate_id
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events & storage
    "Event",
    "CommandResult",
    "SQLiteEventStore",
    "AuditTrail",
    "AuditDraft",
    "AuditLogEntry",
    "WorkflowPolicy",
    # Errors
    "MarketplaceError",
    "ErrorKind",
    "Unauthenticated",
    "Forbidden",
    "AccessDenied",
    "NotFound",
    "InvalidTransition",
    "Conflict",
    "ConcurrentModification",
    "ValidationFailed",
    "InvalidInput",
    "EventStoreError",
    "StreamVersionConflict",
]
