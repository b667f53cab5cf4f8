"""
Metrics collection for the polling system.

This module provides the counters logged after every cycle and tick, and a
short history of ticks for the health endpoint.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from ..models import CycleOutcome, UserRecord

logger = structlog.get_logger(__name__)


@dataclass
class CycleReport:
    """Counters for a single user cycle."""

    user_id: int
    start_time: datetime
    end_time: datetime | None = None
    outcome: CycleOutcome | None = None
    projects: int = 0
    commits_delivered: int = 0
    issues_delivered: int = 0
    commits_self_authored: int = 0
    deliveries_failed: int = 0
    failed_units: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Get cycle duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def finish(self, outcome: CycleOutcome) -> "CycleReport":
        self.outcome = outcome
        self.end_time = datetime.now(UTC)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "outcome": self.outcome.value if self.outcome else None,
            "projects": self.projects,
            "commits_delivered": self.commits_delivered,
            "issues_delivered": self.issues_delivered,
            "commits_self_authored": self.commits_self_authored,
            "deliveries_failed": self.deliveries_failed,
            "failed_units": len(self.failed_units),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class TickMetrics:
    """Metrics for a single scheduler tick."""

    start_time: datetime
    end_time: datetime | None = None
    users_total: int = 0
    users_eligible: int = 0
    outcomes: Counter = field(default_factory=Counter)
    faults: int = 0

    @property
    def duration_seconds(self) -> float:
        """Get tick duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def record(self, outcome: CycleOutcome) -> None:
        self.outcomes[outcome.value] += 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and the HTTP surface."""
        return {
            "start_time": self.start_time.isoformat(),
            "users_total": self.users_total,
            "users_eligible": self.users_eligible,
            "outcomes": {o.value: self.outcomes.get(o.value, 0) for o in CycleOutcome},
            "faults": self.faults,
            "duration_seconds": self.duration_seconds,
        }


class PerformanceTracker:
    """Tracks tick metrics over time."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.ticks: deque[TickMetrics] = deque(maxlen=max_history)

    def record_tick(self, metrics: TickMetrics) -> None:
        """Record metrics from a completed tick."""
        if metrics.end_time:
            self.ticks.append(metrics)

    @property
    def last_tick(self) -> TickMetrics | None:
        return self.ticks[-1] if self.ticks else None

    def get_averages(self) -> dict[str, float]:
        """Get average tick metrics."""
        if not self.ticks:
            return {"avg_tick_time": 0.0, "avg_eligible_users": 0.0, "avg_faults": 0.0}

        count = len(self.ticks)
        return {
            "avg_tick_time": sum(t.duration_seconds for t in self.ticks) / count,
            "avg_eligible_users": sum(t.users_eligible for t in self.ticks) / count,
            "avg_faults": sum(t.faults for t in self.ticks) / count,
        }


def collect_statistics(users: list[UserRecord]) -> dict[str, int]:
    """Count users, users with a credential and users in an error episode."""
    return {
        "users": len(users),
        "users_with_credential": sum(1 for user in users if user.is_eligible),
        "users_with_error": sum(1 for user in users if user.has_error),
    }
