"""
Dispute Projections
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from medequip.disputes.models import DisputeStatus
from medequip.kernel.events import Event


class DisputeRegistry:
    """
    Dispute registry projection

    Each dispute dict carries its message thread under "messages".
    """

    def __init__(self) -> None:
        self.disputes: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "DisputeOpened":
            self._apply_opened(event)
        elif event.event_type == "DisputeMessageAdded":
            self._apply_message_added(event)
        elif event.event_type == "DisputeEscalated":
            self._apply_escalated(event)
        elif event.event_type == "DisputeResolved":
            self._apply_resolved(event)

    def _apply_opened(self, event: Event) -> None:
        payload = event.payload
        opened_at = datetime.fromisoformat(payload["opened_at"])
        self.disputes[payload["dispute_id"]] = {
            "dispute_id": payload["dispute_id"],
            "service_request_id": payload["service_request_id"],
            "organization_id": payload["organization_id"],
            "provider_id": payload.get("provider_id"),
            "dispute_type": payload["dispute_type"],
            "status": DisputeStatus.OPEN.value,
            "description_vi": payload["description_vi"],
            "description_en": payload.get("description_en"),
            "opened_by": payload["opened_by"],
            "opened_by_organization_id": payload["opened_by_organization_id"],
            "messages": [],
            "escalated_at": None,
            "escalation_reason": None,
            "resolution": None,
            "refund_amount": None,
            "resolution_notes": None,
            "resolved_by": None,
            "resolved_at": None,
            "created_at": opened_at,
            "updated_at": opened_at,
            "version": event.version,
        }

    def _apply_message_added(self, event: Event) -> None:
        payload = event.payload
        dispute = self.disputes.get(payload["dispute_id"])
        if dispute is None:
            return
        created_at = datetime.fromisoformat(payload["created_at"])
        dispute["messages"].append(
            {
                "message_id": payload["message_id"],
                "dispute_id": payload["dispute_id"],
                "author_id": payload["author_id"],
                "content_vi": payload["content_vi"],
                "content_en": payload.get("content_en"),
                "created_at": created_at,
            }
        )
        dispute["updated_at"] = created_at
        dispute["version"] = event.version

    def _apply_escalated(self, event: Event) -> None:
        payload = event.payload
        dispute = self.disputes.get(payload["dispute_id"])
        if dispute is None:
            return
        escalated_at = datetime.fromisoformat(payload["escalated_at"])
        dispute["status"] = DisputeStatus.ESCALATED.value
        dispute["escalated_at"] = escalated_at
        dispute["escalation_reason"] = payload.get("reason")
        dispute["updated_at"] = escalated_at
        dispute["version"] = event.version

    def _apply_resolved(self, event: Event) -> None:
        payload = event.payload
        dispute = self.disputes.get(payload["dispute_id"])
        if dispute is None:
            return
        resolved_at = datetime.fromisoformat(payload["resolved_at"])
        refund = payload.get("refund_amount")
        dispute["status"] = DisputeStatus.RESOLVED.value
        dispute["resolution"] = payload["resolution"]
        dispute["refund_amount"] = Decimal(refund) if refund is not None else None
        dispute["resolution_notes"] = payload["resolution_notes"]
        dispute["resolved_by"] = payload["resolved_by"]
        dispute["resolved_at"] = resolved_at
        dispute["updated_at"] = resolved_at
        dispute["version"] = event.version

    # ========================================================================
    # Queries
    # ========================================================================

    def get(self, dispute_id: str) -> dict[str, Any] | None:
        return self.disputes.get(dispute_id)

    def list_all(self) -> list[dict[str, Any]]:
        return list(self.disputes.values())

    def list_by_organization(
        self, organization_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        return [
            d
            for d in self.disputes.values()
            if d["organization_id"] == organization_id
            and (status is None or d["status"] == status)
        ]

    def list_for_provider(self, provider_id: str) -> list[dict[str, Any]]:
        return [d for d in self.disputes.values() if d["provider_id"] == provider_id]

    def list_escalated(self) -> list[dict[str, Any]]:
        return [
            d for d in self.disputes.values() if d["status"] == DisputeStatus.ESCALATED.value
        ]

    def unresolved_for_request(self, service_request_id: str) -> dict[str, Any] | None:
        for dispute in self.disputes.values():
            if (
                dispute["service_request_id"] == service_request_id
                and dispute["status"] != DisputeStatus.RESOLVED.value
            ):
                return dispute
        return None
