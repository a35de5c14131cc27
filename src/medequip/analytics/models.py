"""
Analytics Models - platform-wide figures for the admin dashboard

Everything here is computed on demand from the read models; nothing is
stored.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


class OverviewStats(BaseModel):
    """Top-line platform counts and completed-work revenue"""

    total_hospitals: int = Field(ge=0)
    total_providers: int = Field(ge=0)
    total_equipment: int = Field(ge=0)
    total_service_requests: int = Field(ge=0)
    total_revenue: Decimal = Field(
        description="Sum of accepted quote amounts on completed requests",
    )


class MonthlyCount(BaseModel):
    month: str = Field(description="Bucket label, M/YYYY")
    count: int = Field(ge=0)


class GrowthMetrics(BaseModel):
    """New hospital organizations and provider records per month"""

    hospital_growth: list[MonthlyCount]
    provider_growth: list[MonthlyCount]


class MonthlyVolume(BaseModel):
    month: str
    total: int = 0
    completed: int = 0
    cancelled: int = 0
    completion_rate: float = Field(
        default=0.0, description="completed / (completed + cancelled), 0 when neither"
    )


class ServiceMetrics(BaseModel):
    monthly_volume: list[MonthlyVolume]
    overall_completion_rate: float


class HospitalRevenue(BaseModel):
    organization_id: str
    organization_name: str
    total_revenue: Decimal
    service_count: int


class ProviderRevenue(BaseModel):
    provider_id: str
    provider_name: str
    total_revenue: Decimal
    service_count: int


class RevenueBreakdown(BaseModel):
    total_revenue: Decimal
    average_service_value: Decimal
    revenue_by_hospital: list[HospitalRevenue]
    revenue_by_provider: list[ProviderRevenue]


class HospitalActivity(BaseModel):
    organization_id: str
    organization_name: str
    service_request_count: int


class ProviderPerformance(BaseModel):
    provider_id: str
    provider_name: str
    average_rating: float
    total_ratings: int
    completed_services: int


class TopPerformers(BaseModel):
    """
    Busiest hospitals and best-rated providers

    Only providers with at least one rating are ranked.
    """

    top_hospitals: list[HospitalActivity]
    top_providers: list[ProviderPerformance]


class PlatformHealth(BaseModel):
    """Responsiveness figures, in days rounded to 2 places"""

    avg_quote_response_time_days: float = Field(
        description="Request creation to its first quote, averaged over quoted requests"
    )
    avg_dispute_resolution_time_days: float = Field(
        description="Dispute creation to resolution, averaged over resolved disputes"
    )
    bottleneck_count: int = Field(ge=0, description="Open requests stuck past the threshold")
    escalated_dispute_count: int = Field(ge=0)


class ProviderScorecard(BaseModel):
    """
    One provider's record, recomputed from its assigned requests

    The cached_* fields are the running aggregates kept on the provider
    record, so admins can spot drift between the two.
    """

    provider_id: str
    provider_name: str
    total_services: int = Field(ge=0, description="Requests ever assigned to the provider")
    completed_services: int = Field(ge=0)
    completion_rate: float = Field(description="completed / assigned, 0 with no assignments")
    average_rating: float | None = Field(
        default=None, description="Mean of the ratings on its requests, None when unrated"
    )
    total_ratings: int = Field(ge=0)
    dispute_count: int = Field(ge=0)
    cached_average_rating: float
    cached_total_ratings: int
    cached_completed_services: int


class WindowQuery(BaseModel):
    months: int = Field(ge=1, le=120, description="Months in the window, current one included")


class RankingQuery(BaseModel):
    top_n: int = Field(ge=1, le=100, description="Rows per ranking")
