"""
Poll cycle engine for Starwatch.

One cycle authenticates a single user, lists the repositories they starred,
fetches the commits and issues of every repository concurrently, notifies the
user of everything newer than their watermark and finally advances the
watermark to the time the fetches were started.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog

from ..config import Settings
from ..exceptions import AuthenticationError, PersistenceError, RemoteAPIError
from ..formatting import commit_message, issue_message, token_error_message
from ..github_client import GitHubClient, GitHubSession
from ..models import Commit, CycleOutcome, Identity, Project, UserRecord
from ..notifier import Notifier
from ..state.manager import UserStore
from .metrics import CycleReport

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def is_self_authored(commit: Commit, identity: Identity) -> bool:
    """Match a commit to the account polling it, by login or by email."""
    if commit.author_login and commit.author_login.casefold() == identity.login.casefold():
        return True
    return bool(identity.email) and (
        commit.author_email.casefold() == identity.email.casefold()
    )


class PollCycleEngine:
    """
    Runs poll cycles for individual users.

    The engine keeps no per-user state between calls. Every cycle works on a
    private copy of the record it is given and writes it back through the
    store at most twice: when the error flag changes and when the watermark
    is committed.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        store: UserStore,
        notifier: Notifier,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the poll cycle engine.

        Args:
            github_client: Factory of authenticated remote sessions
            store: User record store
            notifier: Channel used to reach users
            settings: Application settings
            clock: Source of the current time, aware UTC
        """
        self.github_client = github_client
        self.store = store
        self.notifier = notifier
        self.description_limit = settings.polling_config.description_limit
        self.clock = clock

    async def run_cycle(self, user: UserRecord) -> CycleOutcome:
        """
        Run one poll cycle for a user.

        Args:
            user: The user's record as loaded at the start of the tick

        Returns:
            AUTHENTICATED when the projects were listed and the watermark
            advanced, AUTH_FAILED when the credential was rejected and
            LIST_FAILED when the remote side could not be queried
        """
        user = user.copy()
        report = CycleReport(user_id=user.id, start_time=utcnow())

        try:
            session = await self.github_client.authenticate(user.credential)
        except AuthenticationError as e:
            logger.error("Unable to authenticate", user_id=user.id, error=str(e))
            if not user.has_error:
                await self.notifier.send(user.id, token_error_message(user))
                user.has_error = True
                await self._save(user)
            return self._finish(report, CycleOutcome.AUTH_FAILED)
        except RemoteAPIError as e:
            logger.warning("Remote unreachable", user_id=user.id, error=str(e))
            return self._finish(report, CycleOutcome.LIST_FAILED)

        try:
            if user.has_error:
                user.has_error = False
                await self._save(user)

            try:
                identity = await session.current_identity()
                projects = await session.list_starred_projects()
            except RemoteAPIError as e:
                logger.warning("Unable to load projects", user_id=user.id, error=str(e))
                return self._finish(report, CycleOutcome.LIST_FAILED)

            report.projects = len(projects)

            # Everything created after this instant is left to the next cycle
            cycle_start = self.clock()
            await self._fetch_all(session, user, identity, projects, report)

            user.watermark = max(user.watermark, cycle_start)
            await self._save(user)
            return self._finish(report, CycleOutcome.AUTHENTICATED)
        finally:
            session.close()

    async def _fetch_all(
        self,
        session: GitHubSession,
        user: UserRecord,
        identity: Identity,
        projects: list[Project],
        report: CycleReport,
    ) -> None:
        """Run the commit and issue units of every project and join them."""
        labels: list[str] = []
        units: list[Awaitable[None]] = []
        for project in projects:
            labels.append(f"{project.id}:commits")
            units.append(self._notify_commits(session, user, identity, project, report))
            labels.append(f"{project.id}:issues")
            units.append(self._notify_issues(session, user, project, report))

        results = await asyncio.gather(*units, return_exceptions=True)

        for label, result in zip(labels, results):
            if not isinstance(result, BaseException):
                continue
            report.failed_units.append(label)
            if isinstance(result, RemoteAPIError):
                logger.warning(
                    "Unable to load updates",
                    user_id=user.id,
                    unit=label,
                    error=str(result),
                )
            else:
                logger.error(
                    "Update unit failed unexpectedly",
                    user_id=user.id,
                    unit=label,
                    error=repr(result),
                )

    async def _notify_commits(
        self,
        session: GitHubSession,
        user: UserRecord,
        identity: Identity,
        project: Project,
        report: CycleReport,
    ) -> None:
        commits = await session.list_commits(project.id, since=user.watermark)

        for commit in sorted(commits, key=lambda c: c.created_at):
            if commit.created_at <= user.watermark:
                continue
            if is_self_authored(commit, identity):
                report.commits_self_authored += 1
                continue

            text = commit_message(project, commit, self.description_limit)
            if await self.notifier.send(user.id, text):
                report.commits_delivered += 1
            else:
                report.deliveries_failed += 1

    async def _notify_issues(
        self,
        session: GitHubSession,
        user: UserRecord,
        project: Project,
        report: CycleReport,
    ) -> None:
        issues = await session.list_issues(project.id, created_after=user.watermark)

        for issue in sorted(issues, key=lambda i: i.created_at):
            # The remote filter is only a hint
            if issue.created_at <= user.watermark:
                continue

            text = issue_message(project, issue, self.description_limit)
            if await self.notifier.send(user.id, text):
                report.issues_delivered += 1
            else:
                report.deliveries_failed += 1

    async def _save(self, user: UserRecord) -> bool:
        try:
            await self.store.put(user)
            return True
        except PersistenceError as e:
            logger.error("Unable to save user", user_id=user.id, error=str(e))
            return False

    def _finish(self, report: CycleReport, outcome: CycleOutcome) -> CycleOutcome:
        report.finish(outcome)
        logger.info("Poll cycle finished", **report.to_dict())
        return outcome
