"""
Provider Events
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ProviderRegistered(BaseModel):
    """Provider record created, awaiting verification"""

    provider_id: str = Field(..., description="Provider identifier")
    organization_id: str = Field(..., description="Owning provider organization")
    name: str = Field(..., description="Trading name")
    specialties: list[str] = Field(default_factory=list)
    registered_by: str = Field(..., description="Member who registered it")
    registered_at: datetime


class ProviderReviewStarted(BaseModel):
    provider_id: str
    reviewed_by: str
    started_at: datetime


class ProviderApproved(BaseModel):
    """Verified and activated by a platform admin"""

    provider_id: str
    approved_by: str
    approved_at: datetime
    notes: str | None = None


class ProviderRejected(BaseModel):
    """Verification refused"""

    provider_id: str
    reason: str
    rejected_by: str
    rejected_at: datetime


class ProviderSuspended(BaseModel):
    provider_id: str
    reason: str
    suspended_by: str
    suspended_at: datetime


class ProviderReactivated(BaseModel):
    provider_id: str
    reactivated_by: str
    reactivated_at: datetime
    notes: str | None = None


class ServiceRated(BaseModel):
    """
    Hospital rated a completed request

    Stored on the service request's stream (one rating per request);
    the provider registry folds it into the provider's aggregates.
    """

    service_request_id: str
    provider_id: str
    organization_id: str = Field(..., description="Hospital that rated")
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = None
    rated_by: str
    rated_at: datetime
