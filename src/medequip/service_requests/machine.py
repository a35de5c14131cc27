"""
Service Request Machine

Validates an edge against the transition table and produces the
ServiceRequestStatusChanged event for it. Request handlers use it for
explicit transitions; the quote and dispute handlers call it for the
transitions their workflows cause (quoted, accepted, disputed).
"""

from datetime import datetime
from typing import Any

from medequip.kernel.events import Event, create_event
from medequip.kernel.ids import generate_id
from medequip.service_requests import events
from medequip.service_requests.invariants import is_bottleneck, validate_transition
from medequip.service_requests.models import ServiceRequestStatus

STREAM_TYPE = "ServiceRequest"


class ServiceRequestMachine:
    def __init__(self, bottleneck_threshold_days: int) -> None:
        self.bottleneck_threshold_days = bottleneck_threshold_days

    def transition(
        self,
        request: dict[str, Any],
        target: ServiceRequestStatus,
        *,
        version: int,
        trigger: str,
        actor_id: str | None,
        command_id: str,
        occurred_at: datetime,
        assigned_provider_id: str | None = None,
        quote_id: str | None = None,
    ) -> Event:
        """
        Build the status-change event for request -> target

        Args:
            request: Request dict from the registry
            target: Desired status
            version: Stream version the event will carry
            trigger: What caused the change

        Raises:
            InvalidStatusTransition: If the edge isn't in the table
        """
        current = ServiceRequestStatus(request["status"])
        validate_transition(current, target)

        payload = events.ServiceRequestStatusChanged(
            service_request_id=request["service_request_id"],
            organization_id=request["organization_id"],
            previous_status=current,
            new_status=target,
            trigger=trigger,
            assigned_provider_id=assigned_provider_id or request["assigned_provider_id"],
            quote_id=quote_id,
            changed_by=actor_id,
            changed_at=occurred_at,
        )
        return create_event(
            event_id=generate_id(),
            event_type="ServiceRequestStatusChanged",
            stream_id=request["service_request_id"],
            stream_type=STREAM_TYPE,
            occurred_at=occurred_at,
            actor_id=actor_id,
            command_id=command_id,
            payload=payload.model_dump(mode="json"),
            version=version,
        )

    def is_bottleneck(self, request: dict[str, Any], now: datetime) -> bool:
        return is_bottleneck(request, now, self.bottleneck_threshold_days)
