"""
Pytest configuration and fixtures for Starwatch tests.
"""

from datetime import UTC, datetime, timedelta

import pytest

from starwatch.config import Settings
from starwatch.exceptions import DeliveryError, FetchError, ProjectListError
from starwatch.models import Commit, Identity, Issue, Project
from starwatch.notifier import Notifier
from starwatch.polling.cycle import PollCycleEngine
from starwatch.state.manager import InMemoryUserStore

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable replacement for the engine's clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSession:
    """In-memory remote session."""

    def __init__(self, identity: Identity):
        self.identity = identity
        self.projects: list[Project] = []
        self.commits: dict[str, list[Commit]] = {}
        self.issues: dict[str, list[Issue]] = {}
        self.failing_units: set[tuple[str, str]] = set()
        self.projects_error: Exception | None = None
        self.calls: list[tuple[str, str, datetime]] = []
        self.closed = False

    async def current_identity(self) -> Identity:
        return self.identity

    async def list_starred_projects(self) -> list[Project]:
        if self.projects_error:
            raise self.projects_error
        return list(self.projects)

    async def list_commits(self, project_id: str, since: datetime) -> list[Commit]:
        self.calls.append(("commits", project_id, since))
        if (project_id, "commits") in self.failing_units:
            raise FetchError("commits unavailable", project_id=project_id)
        return list(self.commits.get(project_id, []))

    async def list_issues(self, project_id: str, created_after: datetime) -> list[Issue]:
        self.calls.append(("issues", project_id, created_after))
        if (project_id, "issues") in self.failing_units:
            raise FetchError("issues unavailable", project_id=project_id)
        return list(self.issues.get(project_id, []))

    def close(self) -> None:
        self.closed = True


class FakeGitHubClient:
    """Hands out the same fake session, or fails authentication."""

    def __init__(self, session: FakeSession):
        self.session = session
        self.error: Exception | None = None
        self.credentials: list[str] = []

    async def authenticate(self, credential: str) -> FakeSession:
        self.credentials.append(credential)
        if self.error:
            raise self.error
        return self.session


class RecordingNotifier(Notifier):
    """Notifier remembering every accepted message."""

    def __init__(self) -> None:
        self.messages: list[tuple[int, str]] = []
        self.reject: set[str] = set()

    async def _deliver(self, user_id: int, text: str) -> None:
        if any(marker in text for marker in self.reject):
            raise DeliveryError("rejected", user_id=user_id)
        self.messages.append((user_id, text))


@pytest.fixture
def t0() -> datetime:
    """Reference instant used as the initial watermark."""
    return T0


@pytest.fixture
def mock_settings() -> Settings:
    """Settings for testing."""
    return Settings(
        telegram_bot_token="123456:test-token",
        state_backend="memory",
        enable_polling=False,
        poll_interval_seconds=60,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def clock() -> FakeClock:
    """Clock standing ten seconds after T0."""
    return FakeClock(T0 + timedelta(seconds=10))


@pytest.fixture
def identity() -> Identity:
    return Identity(login="octocat", name="The Octocat", email="octocat@example.com")


@pytest.fixture
def fake_session(identity: Identity) -> FakeSession:
    return FakeSession(identity)


@pytest.fixture
def fake_github(fake_session: FakeSession) -> FakeGitHubClient:
    return FakeGitHubClient(fake_session)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def engine(
    fake_github: FakeGitHubClient,
    store: InMemoryUserStore,
    notifier: RecordingNotifier,
    mock_settings: Settings,
    clock: FakeClock,
) -> PollCycleEngine:
    """Poll cycle engine wired to the fakes."""
    return PollCycleEngine(fake_github, store, notifier, mock_settings, clock=clock)


@pytest.fixture
def make_commit():
    """Build commits relative to T0."""

    def _make(
        seconds: int,
        title: str = "Fix the flux capacitor",
        author_email: str = "doc@example.com",
        author_login: str = "emmett",
    ) -> Commit:
        return Commit(
            title=title,
            author_name="Emmett Brown",
            author_email=author_email,
            body=f"{title}\n\nLonger description",
            created_at=T0 + timedelta(seconds=seconds),
            url=f"https://github.com/org/repo/commit/{seconds}",
            author_login=author_login,
        )

    return _make


@pytest.fixture
def make_issue():
    """Build issues relative to T0."""

    def _make(seconds: int, title: str = "It does not start") -> Issue:
        return Issue(
            title=title,
            author_name="marty",
            body="Steps to reproduce: turn the key",
            created_at=T0 + timedelta(seconds=seconds),
            url=f"https://github.com/org/repo/issues/{seconds}",
        )

    return _make


@pytest.fixture
def list_failure() -> ProjectListError:
    return ProjectListError("starred repositories unavailable", status_code=502)
