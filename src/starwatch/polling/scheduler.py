"""
Fleet scheduler for Starwatch.

This module runs the poll cycle of every eligible user on a fixed interval,
once eagerly at start-up and on demand.
"""

import asyncio
from datetime import UTC, datetime

import structlog

from ..config import Settings
from ..exceptions import PersistenceError
from ..models import CycleOutcome, UserRecord
from ..state.manager import UserStore
from .cycle import PollCycleEngine
from .metrics import PerformanceTracker, TickMetrics

logger = structlog.get_logger(__name__)


class FleetScheduler:
    """
    Schedules poll cycles across all users.

    Ticks are serialized, so a user never has two cycles in flight. Within a
    tick every eligible user gets a task of their own, and a fault in one
    user's cycle is logged without disturbing the others.
    """

    def __init__(self, engine: PollCycleEngine, store: UserStore, settings: Settings):
        """
        Initialize the fleet scheduler.

        Args:
            engine: Poll cycle engine
            store: User record store
            settings: Application settings
        """
        self.engine = engine
        self.store = store
        self.config = settings.polling_config

        self.performance = PerformanceTracker()

        # Held by ticks and by anything else that writes user records
        self.tick_lock = asyncio.Lock()
        self.is_running_flag = False
        self.polling_task: asyncio.Task[None] | None = None

    def is_running(self) -> bool:
        """Check if the periodic loop is active."""
        return self.is_running_flag

    async def start(self) -> None:
        """Start ticking in the background, beginning with an immediate tick."""
        if self.is_running_flag:
            logger.warning("Scheduler already running")
            return

        self.is_running_flag = True
        logger.info(
            "Starting fleet scheduler",
            interval_seconds=self.config.interval_seconds,
            max_concurrent_users=self.config.max_concurrent_users or "unbounded",
        )
        self.polling_task = asyncio.create_task(self._polling_loop())

    async def stop(self) -> None:
        """Stop the periodic loop."""
        if not self.is_running_flag:
            return

        logger.info("Stopping fleet scheduler")
        self.is_running_flag = False

        if self.polling_task and not self.polling_task.done():
            self.polling_task.cancel()
            try:
                await self.polling_task
            except asyncio.CancelledError:
                pass
        self.polling_task = None

    async def _polling_loop(self) -> None:
        """Main polling loop."""
        while self.is_running_flag:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in scheduler tick", error=str(e), exc_info=True)

            await asyncio.sleep(self.config.interval_seconds)

    async def tick(self) -> TickMetrics:
        """
        Run the poll cycle of every eligible user once.

        Returns:
            Metrics of the tick
        """
        async with self.tick_lock:
            metrics = TickMetrics(start_time=datetime.now(UTC))
            logger.info("Tick started", timestamp=metrics.start_time.isoformat())

            try:
                users = await self.store.get_all()
            except PersistenceError as e:
                logger.error("Unable to load users", error=str(e))
                users = []

            eligible = [user for user in users if user.is_eligible]
            metrics.users_total = len(users)
            metrics.users_eligible = len(eligible)

            await self._run_cycles(eligible, metrics)

            metrics.end_time = datetime.now(UTC)
            self.performance.record_tick(metrics)
            logger.info("Tick completed", **metrics.to_dict())
            return metrics

    async def run_single(self, user_id: int) -> CycleOutcome | None:
        """
        Run one user's cycle on demand, never alongside a tick.

        The record is loaded once the lock is held, so a tick that just
        finished cannot leave a stale watermark behind.

        Returns:
            The cycle outcome, or None if the user has no credential
        """
        async with self.tick_lock:
            user = await self.store.get(user_id)
            if user is None or not user.is_eligible:
                return None
            return await self.engine.run_cycle(user)

    async def _run_cycles(self, users: list[UserRecord], metrics: TickMetrics) -> None:
        """Run the cycles of a batch of users concurrently."""
        limit = self.config.max_concurrent_users
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def run_single_user(user: UserRecord) -> None:
            try:
                if semaphore is None:
                    outcome = await self.engine.run_cycle(user)
                else:
                    async with semaphore:
                        outcome = await self.engine.run_cycle(user)
                metrics.record(outcome)
            except Exception as e:
                metrics.faults += 1
                logger.error(
                    "Poll cycle failed unexpectedly",
                    user_id=user.id,
                    error=str(e),
                    exc_info=True,
                )

        tasks = [asyncio.create_task(run_single_user(user)) for user in users]

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
