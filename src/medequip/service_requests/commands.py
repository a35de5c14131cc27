"""
Service Request Commands
"""

from datetime import datetime

from pydantic import BaseModel, Field

from medequip.service_requests.models import Priority, RequestType, ServiceRequestStatus


class CreateServiceRequest(BaseModel):
    """
    File a service request for a piece of hospital equipment

    The Vietnamese description is mandatory; English is optional.
    """

    organization_id: str = Field(..., description="Hospital organization")
    equipment_id: str = Field(..., min_length=1, description="Equipment reference")
    request_type: RequestType = Field(..., description="repair, maintenance, ...")
    priority: Priority = Field(default=Priority.MEDIUM)
    description_vi: str = Field(..., min_length=1, max_length=5000)
    description_en: str | None = Field(default=None, max_length=5000)
    scheduled_at: datetime | None = Field(default=None, description="Preferred service date")


class TransitionServiceRequest(BaseModel):
    """Explicit status change by a party to the request"""

    service_request_id: str
    target_status: ServiceRequestStatus


class ReassignProvider(BaseModel):
    """Platform admin replaces the assigned provider"""

    service_request_id: str
    new_provider_id: str
    reason_vi: str = Field(..., min_length=1)
    reason_en: str | None = None
