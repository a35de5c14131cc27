"""
Dispute Events

Messages live on the dispute's own stream, so a message can never slip in
after the resolution that closed the thread.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from medequip.disputes.models import DisputeType, Resolution


class DisputeOpened(BaseModel):
    dispute_id: str
    service_request_id: str
    organization_id: str = Field(..., description="Hospital that owns the request")
    provider_id: str | None = Field(default=None, description="Provider assigned at opening")
    dispute_type: DisputeType
    description_vi: str
    description_en: str | None = None
    opened_by: str
    opened_by_organization_id: str
    opened_at: datetime


class DisputeMessageAdded(BaseModel):
    dispute_id: str
    message_id: str
    author_id: str
    content_vi: str
    content_en: str | None = None
    created_at: datetime


class DisputeEscalated(BaseModel):
    dispute_id: str
    reason: str | None = None
    escalated_by: str
    escalated_at: datetime


class DisputeResolved(BaseModel):
    """Arbitration decision with both the structured note and its rendering"""

    dispute_id: str
    resolution: Resolution
    reason_vi: str
    reason_en: str | None = None
    refund_amount: Decimal | None = None
    resolution_notes: str
    resolved_by: str
    resolved_at: datetime
