"""
Polling system for Starwatch.

This package contains the poll cycle engine, which handles a single user, and
the fleet scheduler, which runs it for every user on a fixed interval.
"""

from .cycle import PollCycleEngine
from .metrics import CycleReport, PerformanceTracker, TickMetrics
from .scheduler import FleetScheduler

__all__ = [
    "PollCycleEngine",
    "FleetScheduler",
    "CycleReport",
    "TickMetrics",
    "PerformanceTracker",
]
