"""
Provider Projections

Provider records with verification state and cached rating aggregates.
Ratings arrive on service request streams; a completion is counted when
the hospital rates it.
"""

from datetime import datetime
from typing import Any

from medequip.kernel.events import Event
from medequip.providers.invariants import updated_average
from medequip.providers.models import ProviderStatus, VerificationStatus


class ProviderRegistry:
    """
    Provider registry projection

    Rebuilt from Provider* events, ServiceRated and ServiceRequestDeclined.
    completed_services counts rated completions.
    """

    def __init__(self) -> None:
        self.providers: dict[str, dict[str, Any]] = {}
        self._by_organization: dict[str, str] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "ProviderRegistered":
            self._apply_registered(event)
        elif event.event_type == "ProviderReviewStarted":
            self._touch(event, verification_status=VerificationStatus.IN_REVIEW.value)
        elif event.event_type == "ProviderApproved":
            self._touch(
                event,
                status=ProviderStatus.ACTIVE.value,
                verification_status=VerificationStatus.VERIFIED.value,
                verification_notes=event.payload.get("notes"),
            )
        elif event.event_type == "ProviderRejected":
            self._touch(
                event,
                verification_status=VerificationStatus.REJECTED.value,
                verification_notes=event.payload["reason"],
            )
        elif event.event_type == "ProviderSuspended":
            self._touch(event, status=ProviderStatus.SUSPENDED.value)
        elif event.event_type == "ProviderReactivated":
            self._touch(event, status=ProviderStatus.ACTIVE.value)
        elif event.event_type == "ServiceRequestDeclined":
            self._apply_declined(event)
        elif event.event_type == "ServiceRated":
            self._apply_rated(event)

    def _touch(self, event: Event, **changes: Any) -> None:
        provider = self.providers.get(event.payload["provider_id"])
        if provider is None:
            return
        provider.update(changes)
        provider["updated_at"] = event.occurred_at
        provider["version"] = event.version

    def _apply_registered(self, event: Event) -> None:
        payload = event.payload
        self.providers[payload["provider_id"]] = {
            "provider_id": payload["provider_id"],
            "organization_id": payload["organization_id"],
            "name": payload["name"],
            "specialties": payload.get("specialties", []),
            "status": ProviderStatus.PENDING_VERIFICATION.value,
            "verification_status": VerificationStatus.PENDING.value,
            "verification_notes": None,
            "average_rating": 0.0,
            "total_ratings": 0,
            "completed_services": 0,
            "declined_request_ids": set(),
            "created_at": datetime.fromisoformat(payload["registered_at"]),
            "updated_at": event.occurred_at,
            "version": event.version,
        }
        self._by_organization[payload["organization_id"]] = payload["provider_id"]

    def _apply_declined(self, event: Event) -> None:
        provider = self.providers.get(event.payload["provider_id"])
        if provider is not None:
            provider["declined_request_ids"].add(event.payload["service_request_id"])
            provider["version"] = event.version

    def _apply_rated(self, event: Event) -> None:
        # Aggregate only; the event belongs to the request's stream
        provider = self.providers.get(event.payload["provider_id"])
        if provider is None:
            return
        count = provider["total_ratings"]
        provider["average_rating"] = updated_average(
            provider["average_rating"], count, event.payload["rating"]
        )
        provider["total_ratings"] = count + 1
        provider["completed_services"] += 1

    def get(self, provider_id: str) -> dict[str, Any] | None:
        return self.providers.get(provider_id)

    def get_by_organization(self, organization_id: str) -> dict[str, Any] | None:
        provider_id = self._by_organization.get(organization_id)
        return self.providers.get(provider_id) if provider_id else None

    def list_all(
        self,
        status: str | None = None,
        verification_status: str | None = None,
    ) -> list[dict[str, Any]]:
        return [
            p
            for p in self.providers.values()
            if (status is None or p["status"] == status)
            and (verification_status is None or p["verification_status"] == verification_status)
        ]
