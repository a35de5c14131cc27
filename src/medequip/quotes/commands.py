"""
Quote Commands
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class SubmitQuote(BaseModel):
    """
    Provider offers a price for a service request

    currency falls back to the policy default (VND), validity to the
    policy's default_quote_validity_days.
    """

    service_request_id: str
    provider_id: str
    amount: Decimal = Field(..., gt=0, description="Quoted price")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = Field(default=None, max_length=5000)
    estimated_duration_days: int | None = Field(default=None, ge=1)
    available_start_date: date | None = None
    valid_until_days: int | None = Field(default=None, ge=1, le=365)


class UpdateQuote(BaseModel):
    """Edit a pending quote; fields left as None keep their value"""

    quote_id: str
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = Field(default=None, max_length=5000)
    estimated_duration_days: int | None = Field(default=None, ge=1)
    available_start_date: date | None = None
    valid_until_days: int | None = Field(default=None, ge=1, le=365)


class AcceptQuote(BaseModel):
    quote_id: str


class DeclineServiceRequest(BaseModel):
    """Provider passes on a request; the reason goes to the audit trail"""

    service_request_id: str
    provider_id: str
    reason: str
