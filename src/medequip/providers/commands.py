"""
Provider Commands

Registration by the provider organization, verification and suspension
by platform admins, and service ratings by hospitals.
"""

from pydantic import BaseModel, Field


class RegisterProvider(BaseModel):
    """Create the provider record of a provider organization"""

    organization_id: str = Field(..., description="Provider organization")
    name: str = Field(..., min_length=1, max_length=200, description="Trading name")
    specialties: list[str] = Field(
        default_factory=list, description="Equipment categories serviced"
    )


class BeginProviderReview(BaseModel):
    provider_id: str


class ApproveProvider(BaseModel):
    provider_id: str
    notes: str | None = None


class RejectProvider(BaseModel):
    provider_id: str
    reason: str = Field(..., description="Why verification was refused (required)")


class SuspendProvider(BaseModel):
    provider_id: str
    reason: str = Field(..., description="Why the provider is suspended (required)")


class ReactivateProvider(BaseModel):
    provider_id: str
    notes: str | None = None


class RateService(BaseModel):
    """Hospital rates the provider that completed a request"""

    service_request_id: str
    rating: int = Field(..., ge=1, le=5, description="Whole stars, 1 to 5")
    comment: str | None = Field(default=None, max_length=2000)
