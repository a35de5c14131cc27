"""
Service Request Projections

The request registry is the read model behind every request query: the
hospital's own list, the provider marketplace view, and the cross-tenant
admin list.
"""

from datetime import datetime
from typing import Any

from medequip.kernel.events import Event
from medequip.service_requests.invariants import OPEN_FOR_QUOTES


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ServiceRequestRegistry:
    """
    Service request registry projection

    Rebuilt from ServiceRequestCreated, ServiceRequestStatusChanged,
    QuoteReceived, ProviderReassigned and ServiceRated events.
    """

    def __init__(self) -> None:
        self.requests: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "ServiceRequestCreated":
            self._apply_created(event)
        elif event.event_type == "ServiceRequestStatusChanged":
            self._apply_status_changed(event)
        elif event.event_type == "QuoteReceived":
            self._apply_quote_received(event)
        elif event.event_type == "ProviderReassigned":
            self._apply_provider_reassigned(event)
        elif event.event_type == "ServiceRated":
            self._apply_rated(event)

    def _apply_created(self, event: Event) -> None:
        payload = event.payload
        created_at = datetime.fromisoformat(payload["created_at"])
        self.requests[payload["service_request_id"]] = {
            "service_request_id": payload["service_request_id"],
            "organization_id": payload["organization_id"],
            "equipment_id": payload["equipment_id"],
            "requested_by": payload["requested_by"],
            "assigned_provider_id": None,
            "accepted_quote_id": None,
            "request_type": payload["request_type"],
            "priority": payload["priority"],
            "status": "pending",
            "description_vi": payload["description_vi"],
            "description_en": payload.get("description_en"),
            "scheduled_at": _parse(payload.get("scheduled_at")),
            "quote_ids": [],
            "rating": None,
            "created_at": created_at,
            "updated_at": created_at,
            "completed_at": None,
            "version": event.version,
        }

    def _apply_status_changed(self, event: Event) -> None:
        payload = event.payload
        request = self.requests.get(payload["service_request_id"])
        if request is None:
            return
        request["status"] = payload["new_status"]
        if payload.get("assigned_provider_id"):
            request["assigned_provider_id"] = payload["assigned_provider_id"]
        if payload["new_status"] == "accepted":
            request["accepted_quote_id"] = payload.get("quote_id")
        if payload["new_status"] == "completed":
            request["completed_at"] = datetime.fromisoformat(payload["changed_at"])
        request["updated_at"] = datetime.fromisoformat(payload["changed_at"])
        request["version"] = event.version

    def _apply_quote_received(self, event: Event) -> None:
        request = self.requests.get(event.payload["service_request_id"])
        if request is None:
            return
        request["quote_ids"].append(event.payload["quote_id"])
        request["updated_at"] = datetime.fromisoformat(event.payload["received_at"])
        request["version"] = event.version

    def _apply_provider_reassigned(self, event: Event) -> None:
        request = self.requests.get(event.payload["service_request_id"])
        if request is None:
            return
        request["assigned_provider_id"] = event.payload["new_provider_id"]
        request["updated_at"] = datetime.fromisoformat(event.payload["reassigned_at"])
        request["version"] = event.version

    def _apply_rated(self, event: Event) -> None:
        request = self.requests.get(event.payload["service_request_id"])
        if request is None:
            return
        request["rating"] = event.payload["rating"]
        request["version"] = event.version

    # ========================================================================
    # Queries
    # ========================================================================

    def get(self, service_request_id: str) -> dict[str, Any] | None:
        return self.requests.get(service_request_id)

    def list_all(self) -> list[dict[str, Any]]:
        return list(self.requests.values())

    def list_by_organization(
        self, organization_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        return [
            r
            for r in self.requests.values()
            if r["organization_id"] == organization_id
            and (status is None or r["status"] == status)
        ]

    def list_visible_to_provider(
        self,
        provider_id: str,
        declined_request_ids: set[str],
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Marketplace view of one provider

        Requests assigned to the provider, plus open (pending/quoted)
        requests it hasn't declined.
        """
        open_statuses = {s.value for s in OPEN_FOR_QUOTES}
        visible = []
        for r in self.requests.values():
            assigned = r["assigned_provider_id"] == provider_id
            open_to_quote = (
                r["status"] in open_statuses
                and r["service_request_id"] not in declined_request_ids
            )
            if (assigned or open_to_quote) and (status is None or r["status"] == status):
                visible.append(r)
        return visible

    def list_filtered(
        self,
        *,
        status: str | None = None,
        hospital_id: str | None = None,
        provider_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Cross-tenant filter used by platform-admin views"""
        return [
            r
            for r in self.requests.values()
            if (status is None or r["status"] == status)
            and (hospital_id is None or r["organization_id"] == hospital_id)
            and (provider_id is None or r["assigned_provider_id"] == provider_id)
            and (from_date is None or r["created_at"] >= from_date)
            and (to_date is None or r["created_at"] <= to_date)
        ]
