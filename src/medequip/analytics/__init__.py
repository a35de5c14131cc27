"""
Analytics - read-only platform aggregation for platform admins
"""

from medequip.analytics.indicators import (
    compute_growth,
    compute_overview,
    compute_platform_health,
    compute_provider_scorecard,
    compute_revenue_breakdown,
    compute_service_metrics,
    compute_top_performers,
    month_buckets,
)
from medequip.analytics.models import (
    GrowthMetrics,
    OverviewStats,
    PlatformHealth,
    ProviderScorecard,
    RankingQuery,
    RevenueBreakdown,
    ServiceMetrics,
    TopPerformers,
    WindowQuery,
)

__all__ = [
    "GrowthMetrics",
    "OverviewStats",
    "PlatformHealth",
    "ProviderScorecard",
    "RankingQuery",
    "RevenueBreakdown",
    "ServiceMetrics",
    "TopPerformers",
    "WindowQuery",
    "compute_growth",
    "compute_overview",
    "compute_platform_health",
    "compute_provider_scorecard",
    "compute_revenue_breakdown",
    "compute_service_metrics",
    "compute_top_performers",
    "month_buckets",
]
