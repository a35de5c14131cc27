"""
Dispute Commands
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from medequip.disputes.models import DisputeType, Resolution


class OpenDispute(BaseModel):
    """Either party raises a dispute on a request the provider took on"""

    service_request_id: str
    dispute_type: DisputeType = Field(default=DisputeType.OTHER)
    description_vi: str = Field(..., min_length=1, max_length=5000)
    description_en: str | None = Field(default=None, max_length=5000)


class AddDisputeMessage(BaseModel):
    dispute_id: str
    content_vi: str = Field(..., min_length=1, max_length=5000)
    content_en: str | None = Field(default=None, max_length=5000)


class EscalateDispute(BaseModel):
    """Hand the dispute to platform admins"""

    dispute_id: str
    reason: str | None = Field(default=None, max_length=2000)


class ResolveDispute(BaseModel):
    """
    Platform admin arbitration

    refund_amount is required for refund and partial_refund and must be
    absent otherwise.
    """

    dispute_id: str
    resolution: Resolution
    reason_vi: str = Field(..., min_length=1)
    reason_en: str | None = None
    refund_amount: Decimal | None = None
