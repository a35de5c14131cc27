"""
Workflow Policy - tunable parameters of the marketplace workflow

Thresholds and switches that operators may adjust without touching the
state machines themselves: when a request counts as stuck, how long a
decline reason must be, analytics window sizes, who may accept quotes.
"""

from pydantic import BaseModel, Field


class WorkflowPolicy(BaseModel):
    """Marketplace workflow parameters"""

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    # Service requests
    bottleneck_threshold_days: int = Field(
        default=7,
        ge=1,
        description="Open requests not updated for longer than this are flagged as bottlenecks",
    )

    # Quotes
    default_currency: str = Field(
        default="VND",
        min_length=3,
        max_length=3,
        description="Currency applied when a quote doesn't name one",
    )

    default_quote_validity_days: int = Field(
        default=30,
        ge=1,
        description="Quote validity when the provider doesn't set valid_until_days",
    )

    decline_reason_min_length: int = Field(
        default=10,
        ge=1,
        description="Minimum characters in a provider's decline reason",
    )

    acceptance_requires_admin: bool = Field(
        default=True,
        description="Only hospital owners/admins may accept quotes",
    )

    forbid_self_acceptance: bool = Field(
        default=True,
        description="The member who filed a request may not accept quotes on it",
    )

    # Analytics
    analytics_window_months: int = Field(
        default=6,
        ge=1,
        le=36,
        description="Trailing months covered by growth and service metrics",
    )

    revenue_top_n: int = Field(
        default=10,
        ge=1,
        description="Rows in each revenue breakdown ranking",
    )

    top_performers_n: int = Field(
        default=5,
        ge=1,
        description="Rows in each top performers ranking",
    )

    # Audit
    audit_query_limit_max: int = Field(
        default=500,
        ge=1,
        description="Upper bound on entries returned by one audit query",
    )
