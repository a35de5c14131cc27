"""
Prometheus metrics for the marketplace engine.

Counters for the event log and command pipeline, plus workflow-level
signals: transitions, quote outcomes, arbitration and authorization denials.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ============================================================================
# Event Log Metrics
# ============================================================================

events_appended_total = Counter(
    "medequip_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

stream_version_conflicts_total = Counter(
    "medequip_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

audit_entries_recorded_total = Counter(
    "medequip_audit_entries_recorded_total",
    "Total number of audit log entries written",
    ["action"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "medequip_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

commands_processed_total = Counter(
    "medequip_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, failure
)

authorization_denials_total = Counter(
    "medequip_authorization_denials_total",
    "Guard rejections by error kind",
    ["kind"],
)

# ============================================================================
# Workflow Metrics
# ============================================================================

service_request_transitions_total = Counter(
    "medequip_service_request_transitions_total",
    "Service request status transitions",
    ["from_status", "to_status"],
)

quote_outcomes_total = Counter(
    "medequip_quote_outcomes_total",
    "Quotes reaching a terminal status",
    ["status"],
)

disputes_arbitrated_total = Counter(
    "medequip_disputes_arbitrated_total",
    "Disputes resolved by platform admins",
    ["resolution"],
)

bottleneck_requests = Gauge(
    "medequip_bottleneck_requests",
    "Open service requests with no update past the bottleneck threshold",
)

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator recording duration and outcome of a command.

    Args:
        command_type: Label for the command (e.g. "accept_quote")
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                command_duration_seconds.labels(command_type=command_type).observe(
                    time.perf_counter() - start
                )
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """Start the Prometheus HTTP exporter on the given port."""
    start_http_server(port)
