"""
Starwatch

Polls the GitHub accounts of Telegram users for new commits and issues on the
repositories they starred, and notifies each user once per new event.
"""

__version__ = "0.1.0"
__author__ = "Starwatch"
__email__ = "support@example.com"

from .config import Settings
from .exceptions import StarwatchError
from .github_client import GitHubClient
from .models import CycleOutcome, UserRecord, UserState
from .polling import FleetScheduler, PollCycleEngine

__all__ = [
    "Settings",
    "GitHubClient",
    "PollCycleEngine",
    "FleetScheduler",
    "UserRecord",
    "UserState",
    "CycleOutcome",
    "StarwatchError",
]
