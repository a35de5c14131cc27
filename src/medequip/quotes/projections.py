"""
Quote Projections
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from medequip.kernel.events import Event
from medequip.quotes.invariants import is_expired, win_rate
from medequip.quotes.models import QuoteStats, QuoteStatus


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class QuoteRegistry:
    """
    Quote registry projection

    Rebuilt from QuoteSubmitted, QuoteUpdated, QuoteAccepted, QuoteRejected
    and QuoteExpired events.
    """

    def __init__(self) -> None:
        self.quotes: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "QuoteSubmitted":
            self._apply_submitted(event)
        elif event.event_type == "QuoteUpdated":
            self._apply_updated(event)
        elif event.event_type == "QuoteAccepted":
            quote = self._touch(event, QuoteStatus.ACCEPTED)
            if quote is not None:
                quote["accepted_by"] = event.payload["accepted_by"]
                quote["accepted_at"] = datetime.fromisoformat(event.payload["accepted_at"])
        elif event.event_type == "QuoteRejected":
            quote = self._touch(event, QuoteStatus.REJECTED)
            if quote is not None:
                quote["rejection_reason"] = event.payload["reason"]
        elif event.event_type == "QuoteExpired":
            self._touch(event, QuoteStatus.EXPIRED)

    def _apply_submitted(self, event: Event) -> None:
        payload = event.payload
        submitted_at = datetime.fromisoformat(payload["submitted_at"])
        start = payload.get("available_start_date")
        self.quotes[payload["quote_id"]] = {
            "quote_id": payload["quote_id"],
            "service_request_id": payload["service_request_id"],
            "provider_id": payload["provider_id"],
            "provider_organization_id": payload["provider_organization_id"],
            "hospital_organization_id": payload["hospital_organization_id"],
            "status": QuoteStatus.PENDING.value,
            "amount": Decimal(payload["amount"]),
            "currency": payload["currency"],
            "valid_until": _parse(payload.get("valid_until")),
            "notes": payload.get("notes"),
            "estimated_duration_days": payload.get("estimated_duration_days"),
            "available_start_date": date.fromisoformat(start) if start else None,
            "submitted_by": payload["submitted_by"],
            "accepted_by": None,
            "accepted_at": None,
            "rejection_reason": None,
            "created_at": submitted_at,
            "updated_at": submitted_at,
            "version": event.version,
        }

    def _apply_updated(self, event: Event) -> None:
        payload = event.payload
        quote = self.quotes.get(payload["quote_id"])
        if quote is None:
            return
        if payload.get("amount") is not None:
            quote["amount"] = Decimal(payload["amount"])
        if payload.get("currency") is not None:
            quote["currency"] = payload["currency"]
        if payload.get("valid_until") is not None:
            quote["valid_until"] = _parse(payload["valid_until"])
        if payload.get("notes") is not None:
            quote["notes"] = payload["notes"]
        if payload.get("estimated_duration_days") is not None:
            quote["estimated_duration_days"] = payload["estimated_duration_days"]
        if payload.get("available_start_date") is not None:
            quote["available_start_date"] = date.fromisoformat(payload["available_start_date"])
        quote["updated_at"] = datetime.fromisoformat(payload["updated_at"])
        quote["version"] = event.version

    def _touch(self, event: Event, status: QuoteStatus) -> dict[str, Any] | None:
        quote = self.quotes.get(event.payload["quote_id"])
        if quote is None:
            return None
        quote["status"] = status.value
        quote["updated_at"] = event.occurred_at
        quote["version"] = event.version
        return quote

    # ========================================================================
    # Queries
    # ========================================================================

    def get(self, quote_id: str) -> dict[str, Any] | None:
        return self.quotes.get(quote_id)

    def list_all(self) -> list[dict[str, Any]]:
        return list(self.quotes.values())

    def list_for_request(self, service_request_id: str) -> list[dict[str, Any]]:
        return [q for q in self.quotes.values() if q["service_request_id"] == service_request_id]

    def list_for_provider(
        self, provider_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        return [
            q
            for q in self.quotes.values()
            if q["provider_id"] == provider_id and (status is None or q["status"] == status)
        ]

    def pending_for_request(self, service_request_id: str) -> list[dict[str, Any]]:
        return [
            q
            for q in self.list_for_request(service_request_id)
            if q["status"] == QuoteStatus.PENDING.value
        ]

    def pending_from_provider(
        self, service_request_id: str, provider_id: str
    ) -> dict[str, Any] | None:
        for quote in self.pending_for_request(service_request_id):
            if quote["provider_id"] == provider_id:
                return quote
        return None

    def list_expired(self, now: datetime) -> list[dict[str, Any]]:
        return [q for q in self.quotes.values() if is_expired(q, now)]

    def first_quote_at(self, service_request_id: str) -> datetime | None:
        """Submission time of the earliest quote on a request"""
        times = [q["created_at"] for q in self.list_for_request(service_request_id)]
        return min(times) if times else None

    def stats(self, provider_id: str) -> QuoteStats:
        quotes = self.list_for_provider(provider_id)
        counts = {status: 0 for status in QuoteStatus}
        for quote in quotes:
            counts[QuoteStatus(quote["status"])] += 1
        accepted = counts[QuoteStatus.ACCEPTED]
        rejected = counts[QuoteStatus.REJECTED]
        return QuoteStats(
            pending_count=counts[QuoteStatus.PENDING],
            accepted_count=accepted,
            rejected_count=rejected,
            win_rate=win_rate(accepted, rejected),
        )
