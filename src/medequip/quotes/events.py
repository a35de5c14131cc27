"""
Quote Events

Each quote has its own stream. Acceptance and cancellation touch several
quote streams plus the request stream in one transaction.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class QuoteSubmitted(BaseModel):
    """Provider priced a service request"""

    quote_id: str = Field(..., description="Quote identifier")
    service_request_id: str
    provider_id: str
    provider_organization_id: str
    hospital_organization_id: str
    amount: Decimal = Field(..., gt=0)
    currency: str
    valid_until: datetime | None = None
    notes: str | None = None
    estimated_duration_days: int | None = None
    available_start_date: date | None = None
    submitted_by: str
    submitted_at: datetime


class QuoteUpdated(BaseModel):
    """Pending quote edited; only the fields present changed"""

    quote_id: str
    amount: Decimal | None = None
    currency: str | None = None
    valid_until: datetime | None = None
    notes: str | None = None
    estimated_duration_days: int | None = None
    available_start_date: date | None = None
    updated_by: str
    updated_at: datetime


class QuoteAccepted(BaseModel):
    quote_id: str
    service_request_id: str
    provider_id: str
    accepted_by: str
    accepted_at: datetime


class QuoteRejected(BaseModel):
    """
    Quote closed without winning

    reason is "another_quote_accepted" or "request_cancelled".
    """

    quote_id: str
    service_request_id: str
    provider_id: str
    reason: str
    rejected_at: datetime


class QuoteExpired(BaseModel):
    quote_id: str
    service_request_id: str
    provider_id: str
    valid_until: datetime
    expired_at: datetime


class ServiceRequestDeclined(BaseModel):
    """
    Provider declined to quote a request

    Lives on the provider's stream; the request itself is unaffected.
    """

    service_request_id: str
    provider_id: str
    provider_organization_id: str
    reason: str
    declined_by: str
    declined_at: datetime
