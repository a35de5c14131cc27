"""
Service Request Events

Everything that touches a request lands on its stream, including quote
arrivals and ratings, so any two mutations of the same request serialize
through the stream version.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from medequip.service_requests.models import Priority, RequestType, ServiceRequestStatus


class ServiceRequestCreated(BaseModel):
    """Hospital filed a request for equipment service"""

    service_request_id: str = Field(..., description="Request identifier")
    organization_id: str = Field(..., description="Hospital organization (immutable)")
    equipment_id: str = Field(..., description="External equipment reference")
    requested_by: str = Field(..., description="Member who filed the request")
    request_type: RequestType
    priority: Priority
    description_vi: str
    description_en: str | None = None
    scheduled_at: datetime | None = None
    created_at: datetime


class ServiceRequestStatusChanged(BaseModel):
    """
    Status moved along an edge of the transition table

    trigger says what caused it: manual, quote_submitted, quote_accepted
    or dispute_opened.
    """

    service_request_id: str
    organization_id: str
    previous_status: ServiceRequestStatus
    new_status: ServiceRequestStatus
    trigger: str = Field(default="manual")
    assigned_provider_id: str | None = Field(
        default=None, description="Assigned provider after the change"
    )
    quote_id: str | None = Field(default=None, description="Quote behind the change, if any")
    changed_by: str | None = None
    changed_at: datetime


class QuoteReceived(BaseModel):
    """A quote was filed against the request"""

    service_request_id: str
    quote_id: str
    provider_id: str
    received_at: datetime


class ProviderReassigned(BaseModel):
    """Platform admin replaced the assigned provider"""

    service_request_id: str
    previous_provider_id: str | None
    new_provider_id: str
    reason_vi: str
    reason_en: str | None = None
    reassigned_by: str
    reassigned_at: datetime
