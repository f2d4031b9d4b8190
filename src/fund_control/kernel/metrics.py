"""
Prometheus metrics collection for Fund Control.

Provides observability into postings, rejections, approvals and the
health of the event store.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from fund_control.kernel.errors import DomainError

# ============================================================================
# Core Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "fundctl_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

stream_version_conflicts_total = Counter(
    "fundctl_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "fundctl_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

commands_processed_total = Counter(
    "fundctl_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, rejected, failure
)

# ============================================================================
# Fund Control Metrics
# ============================================================================

funds_unavailable_total = Counter(
    "fundctl_funds_unavailable_total",
    "Reservations rejected for insufficient funds",
    ["scope"],  # scope: appropriation, budget
)

obligations_created_total = Counter(
    "fundctl_obligations_created_total",
    "Total number of obligations recorded",
    ["color_of_money"],
)

expenditures_posted_total = Counter(
    "fundctl_expenditures_posted_total",
    "Total number of expenditures posted",
)

appropriation_utilization_ratio = Gauge(
    "fundctl_appropriation_utilization_ratio",
    "Obligated / appropriated per appropriation",
    ["appropriation_id"],
)

approval_actions_total = Counter(
    "fundctl_approval_actions_total",
    "Approval actions recorded",
    ["action", "auto"],
)

budget_versions_committed_total = Counter(
    "fundctl_budget_versions_committed_total",
    "Budget versions committed",
    ["source"],  # source: approval, rollback
)

# ============================================================================
# System Metrics
# ============================================================================

projection_rebuild_duration_seconds = Histogram(
    "fundctl_projection_rebuild_duration_seconds",
    "Duration of projection rebuild in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)

tick_execution_duration_seconds = Histogram(
    "fundctl_tick_execution_duration_seconds",
    "Duration of tick execution in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track command processing duration and outcome.

    Domain rejections are counted as "rejected", anything else that
    escapes as "failure".

    Args:
        command_type: Type of command being processed
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except DomainError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                command_duration_seconds.labels(command_type=command_type).observe(duration)
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)
