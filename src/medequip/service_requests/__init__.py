"""
Service Requests - the request lifecycle state machine

A hospital files a request for equipment service; providers quote on it;
the accepted provider starts and completes the work. Disputes can reopen
any request that reached a provider.
"""

from medequip.service_requests.invariants import (
    ALLOWED_TRANSITIONS,
    InvalidStatusTransition,
    is_bottleneck,
    is_valid_transition,
)
from medequip.service_requests.machine import ServiceRequestMachine
from medequip.service_requests.models import Priority, RequestType, ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidStatusTransition",
    "Priority",
    "RequestType",
    "ServiceRequestMachine",
    "ServiceRequestRegistry",
    "ServiceRequestStatus",
    "is_bottleneck",
    "is_valid_transition",
]
