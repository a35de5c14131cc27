"""
Platform Indicators - cross-tenant aggregation for platform admins

Pure functions over read-model snapshots. The facade gates every call
behind the platform-admin check and hands in plain lists of dicts.

Fun fact: Revenue only counts quotes whose request actually reached
completed; an accepted quote on a request that ended in dispute was
promised, not earned.
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Any

from medequip.analytics.models import (
    GrowthMetrics,
    HospitalActivity,
    HospitalRevenue,
    MonthlyCount,
    MonthlyVolume,
    OverviewStats,
    PlatformHealth,
    ProviderPerformance,
    ProviderRevenue,
    ProviderScorecard,
    RevenueBreakdown,
    ServiceMetrics,
    TopPerformers,
)

SECONDS_PER_DAY = 86400
UNKNOWN = "Unknown"


def month_buckets(now: datetime, months: int) -> list[tuple[int, int, str]]:
    """
    Trailing calendar months ending with now's month, oldest first

    Returns:
        (year, month, "M/YYYY") tuples

    Example:
        >>> month_buckets(datetime(2025, 2, 10), 3)
        [(2024, 12, '12/2024'), (2025, 1, '1/2025'), (2025, 2, '2/2025')]
    """
    current = now.year * 12 + (now.month - 1)
    buckets = []
    for offset in range(months - 1, -1, -1):
        year, month_index = divmod(current - offset, 12)
        buckets.append((year, month_index + 1, f"{month_index + 1}/{year}"))
    return buckets


def bucket_index(timestamp: datetime, buckets: list[tuple[int, int, str]]) -> int:
    """Index of the bucket containing timestamp, -1 if outside the window"""
    for i, (year, month, _) in enumerate(buckets):
        if timestamp.year == year and timestamp.month == month:
            return i
    return -1


def revenue_quotes(
    requests: Iterable[dict[str, Any]], quotes: Iterable[dict[str, Any]]
) -> list[tuple[dict[str, Any], dict[str, Any]]]:
    """(quote, request) pairs of accepted quotes on completed requests"""
    completed = {r["service_request_id"]: r for r in requests if r["status"] == "completed"}
    return [
        (q, completed[q["service_request_id"]])
        for q in quotes
        if q["status"] == "accepted" and q["service_request_id"] in completed
    ]


def compute_overview(
    hospitals: list[dict[str, Any]],
    providers: list[dict[str, Any]],
    equipment_count: int,
    requests: list[dict[str, Any]],
    quotes: list[dict[str, Any]],
) -> OverviewStats:
    total = sum((q["amount"] for q, _ in revenue_quotes(requests, quotes)), Decimal(0))
    return OverviewStats(
        total_hospitals=len(hospitals),
        total_providers=len(providers),
        total_equipment=equipment_count,
        total_service_requests=len(requests),
        total_revenue=total,
    )


def _monthly_counts(
    timestamps: Iterable[datetime], buckets: list[tuple[int, int, str]]
) -> list[MonthlyCount]:
    counts = [0] * len(buckets)
    for ts in timestamps:
        idx = bucket_index(ts, buckets)
        if idx != -1:
            counts[idx] += 1
    return [MonthlyCount(month=label, count=counts[i]) for i, (_, _, label) in enumerate(buckets)]


def compute_growth(
    hospitals: list[dict[str, Any]],
    providers: list[dict[str, Any]],
    now: datetime,
    months: int,
) -> GrowthMetrics:
    """
    New hospital organizations and provider records per month

    Args:
        hospitals: Hospital organization dicts (created_at)
        providers: Provider dicts (created_at)
        now: Window end
        months: Window length
    """
    buckets = month_buckets(now, months)
    return GrowthMetrics(
        hospital_growth=_monthly_counts((h["created_at"] for h in hospitals), buckets),
        provider_growth=_monthly_counts((p["created_at"] for p in providers), buckets),
    )


def compute_service_metrics(
    requests: list[dict[str, Any]], now: datetime, months: int
) -> ServiceMetrics:
    """
    Request volume and completion rate per month

    Completion rate is completed / (completed + cancelled), per bucket and
    overall, with 0 when a bucket has neither.
    """
    buckets = month_buckets(now, months)
    volume = [MonthlyVolume(month=label) for _, _, label in buckets]
    total_completed = 0
    total_cancelled = 0

    for request in requests:
        completed = request["status"] == "completed"
        cancelled = request["status"] == "cancelled"
        total_completed += completed
        total_cancelled += cancelled

        idx = bucket_index(request["created_at"], buckets)
        if idx == -1:
            continue
        bucket = volume[idx]
        bucket.total += 1
        bucket.completed += completed
        bucket.cancelled += cancelled

    for bucket in volume:
        terminal = bucket.completed + bucket.cancelled
        bucket.completion_rate = bucket.completed / terminal if terminal else 0.0

    total_terminal = total_completed + total_cancelled
    return ServiceMetrics(
        monthly_volume=volume,
        overall_completion_rate=total_completed / total_terminal if total_terminal else 0.0,
    )


def compute_revenue_breakdown(
    requests: list[dict[str, Any]],
    quotes: list[dict[str, Any]],
    organization_names: dict[str, str],
    provider_names: dict[str, str],
    top_n: int,
) -> RevenueBreakdown:
    """
    Revenue totals and top-N hospitals and providers by revenue

    Args:
        organization_names: organization_id -> name
        provider_names: provider_id -> name
        top_n: Rows per ranking
    """
    pairs = revenue_quotes(requests, quotes)
    total = sum((q["amount"] for q, _ in pairs), Decimal(0))
    average = total / len(pairs) if pairs else Decimal(0)

    by_hospital: dict[str, list[Decimal]] = {}
    by_provider: dict[str, list[Decimal]] = {}
    for quote, request in pairs:
        by_hospital.setdefault(request["organization_id"], []).append(quote["amount"])
        by_provider.setdefault(quote["provider_id"], []).append(quote["amount"])

    hospital_rows = sorted(
        (
            HospitalRevenue(
                organization_id=org_id,
                organization_name=organization_names.get(org_id, UNKNOWN),
                total_revenue=sum(amounts, Decimal(0)),
                service_count=len(amounts),
            )
            for org_id, amounts in by_hospital.items()
        ),
        key=lambda row: (-row.total_revenue, row.organization_name),
    )
    provider_rows = sorted(
        (
            ProviderRevenue(
                provider_id=provider_id,
                provider_name=provider_names.get(provider_id, UNKNOWN),
                total_revenue=sum(amounts, Decimal(0)),
                service_count=len(amounts),
            )
            for provider_id, amounts in by_provider.items()
        ),
        key=lambda row: (-row.total_revenue, row.provider_name),
    )

    return RevenueBreakdown(
        total_revenue=total,
        average_service_value=average.quantize(Decimal("0.01")),
        revenue_by_hospital=hospital_rows[:top_n],
        revenue_by_provider=provider_rows[:top_n],
    )


def compute_top_performers(
    requests: list[dict[str, Any]],
    organization_names: dict[str, str],
    providers: list[dict[str, Any]],
    top_n: int,
) -> TopPerformers:
    """
    Hospitals by request count, providers by average rating

    Provider ties are broken by rating count, then name.
    """
    counts: dict[str, int] = {}
    for request in requests:
        counts[request["organization_id"]] = counts.get(request["organization_id"], 0) + 1

    hospitals = sorted(
        (
            HospitalActivity(
                organization_id=org_id,
                organization_name=organization_names.get(org_id, UNKNOWN),
                service_request_count=count,
            )
            for org_id, count in counts.items()
        ),
        key=lambda row: (-row.service_request_count, row.organization_name),
    )

    rated = sorted(
        (p for p in providers if p["total_ratings"] > 0),
        key=lambda p: (-p["average_rating"], -p["total_ratings"], p["name"]),
    )
    return TopPerformers(
        top_hospitals=hospitals[:top_n],
        top_providers=[
            ProviderPerformance(
                provider_id=p["provider_id"],
                provider_name=p["name"],
                average_rating=p["average_rating"],
                total_ratings=p["total_ratings"],
                completed_services=p["completed_services"],
            )
            for p in rated[:top_n]
        ],
    )


def _average_days(durations_seconds: list[float]) -> float:
    if not durations_seconds:
        return 0.0
    return round(sum(durations_seconds) / len(durations_seconds) / SECONDS_PER_DAY, 2)


def compute_platform_health(
    requests: list[dict[str, Any]],
    first_quote_times: dict[str, datetime],
    disputes: list[dict[str, Any]],
    bottleneck_count: int,
) -> PlatformHealth:
    """
    Quote responsiveness and dispute turnaround

    Args:
        requests: Service request dicts (created_at)
        first_quote_times: service_request_id -> earliest quote submission
        disputes: Dispute dicts (created_at, resolved_at, status)
        bottleneck_count: Open requests past the bottleneck threshold
    """
    response = [
        (first_quote_times[r["service_request_id"]] - r["created_at"]).total_seconds()
        for r in requests
        if r["service_request_id"] in first_quote_times
    ]
    resolution = [
        (d["resolved_at"] - d["created_at"]).total_seconds()
        for d in disputes
        if d["status"] == "resolved" and d["resolved_at"] is not None
    ]
    return PlatformHealth(
        avg_quote_response_time_days=_average_days(response),
        avg_dispute_resolution_time_days=_average_days(resolution),
        bottleneck_count=bottleneck_count,
        escalated_dispute_count=sum(1 for d in disputes if d["status"] == "escalated"),
    )


def compute_provider_scorecard(
    provider: dict[str, Any],
    requests: Iterable[dict[str, Any]],
    disputes: Iterable[dict[str, Any]],
) -> ProviderScorecard:
    """
    Per-provider figures for the admin provider page

    Args:
        provider: Provider record (name and cached rating aggregates)
        requests: Service request dicts; only those assigned to the provider count
        disputes: Dispute dicts, matched to the provider through their request
    """
    assigned = [r for r in requests if r["assigned_provider_id"] == provider["provider_id"]]
    assigned_ids = {r["service_request_id"] for r in assigned}
    completed = sum(1 for r in assigned if r["status"] == "completed")
    ratings = [r["rating"] for r in assigned if r["rating"] is not None]

    return ProviderScorecard(
        provider_id=provider["provider_id"],
        provider_name=provider["name"],
        total_services=len(assigned),
        completed_services=completed,
        completion_rate=completed / len(assigned) if assigned else 0.0,
        average_rating=sum(ratings) / len(ratings) if ratings else None,
        total_ratings=len(ratings),
        dispute_count=sum(1 for d in disputes if d["service_request_id"] in assigned_ids),
        cached_average_rating=provider["average_rating"],
        cached_total_ratings=provider["total_ratings"],
        cached_completed_services=provider["completed_services"],
    )
