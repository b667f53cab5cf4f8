"""
GitHub API client for Starwatch.

This module wraps PyGithub behind the small session interface the poll cycle
needs: the authenticated identity, starred repositories, and recent commits
and issues. PyGithub is synchronous, so every remote call runs in a worker
thread to let the fetches of different projects and users overlap.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import structlog
from github import (
    Auth,
    BadCredentialsException,
    Github,
    GithubException,
    RateLimitExceededException,
)
from github.AuthenticatedUser import AuthenticatedUser

from .config import Settings
from .exceptions import AuthenticationError, FetchError, ProjectListError, RemoteAPIError
from .models import Commit, Identity, Issue, Project, ensure_utc

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GitHubSession:
    """
    An authenticated view of GitHub for a single user credential.

    Sessions are created by :meth:`GitHubClient.authenticate` and are not
    shared between users.
    """

    def __init__(self, github: Github, user: AuthenticatedUser) -> None:
        self._github = github
        self._user = user
        self._identity: Identity | None = None

    async def _call(
        self,
        func: Callable[..., T],
        *args: Any,
        **context: Any,
    ) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except GithubException as e:
            raise RemoteAPIError(
                f"GitHub request failed: {e}", status_code=e.status, context=context
            ) from e
        except OSError as e:
            # requests' transport errors derive from OSError
            raise RemoteAPIError(f"GitHub unreachable: {e}", context=context) from e

    async def current_identity(self) -> Identity:
        """
        Get the account this session is authenticated as.

        GitHub only reports the public email on the user itself, so a user
        without one gets their primary verified address from the email list.
        The list needs the ``user:email`` scope; without it the email stays
        empty and self-authored commits are matched on the login alone.
        """
        if self._identity is not None:
            return self._identity

        email = self._user.email or ""
        if not email:
            try:
                emails = await self._call(self._user.get_emails, login=self._user.login)
            except RemoteAPIError as e:
                logger.debug(
                    "Unable to list account emails",
                    login=self._user.login,
                    status_code=e.status_code,
                )
                emails = []
            email = _primary_email(emails)

        self._identity = Identity(
            login=self._user.login,
            name=self._user.name or "",
            email=email,
        )
        return self._identity

    async def list_starred_projects(self) -> list[Project]:
        """
        List the repositories starred by the user.

        Returns:
            List of projects, in the order GitHub returns them

        Raises:
            ProjectListError: If the listing fails
        """

        def fetch() -> list[Project]:
            return [
                Project(id=repo.full_name, name=repo.full_name, url=repo.html_url)
                for repo in self._user.get_starred()
            ]

        try:
            return await self._call(fetch, login=self._user.login)
        except RemoteAPIError as e:
            raise ProjectListError(
                str(e), status_code=e.status_code, context=e.context
            ) from e

    async def list_commits(self, project_id: str, since: datetime) -> list[Commit]:
        """
        List commits of a repository since a timestamp.

        Args:
            project_id: Full repository name (owner/repo)
            since: Only commits at or after this time are returned by GitHub

        Returns:
            List of commits

        Raises:
            FetchError: If the listing fails
        """

        def fetch() -> list[Commit]:
            repo = self._github.get_repo(project_id, lazy=True)
            commits = []
            for item in repo.get_commits(since=since):
                git_commit = item.commit
                author = git_commit.author
                committer = git_commit.committer
                created_at = committer.date if committer else author.date
                message = git_commit.message or ""
                commits.append(
                    Commit(
                        title=message.splitlines()[0] if message else "",
                        author_name=author.name or "",
                        author_email=author.email or "",
                        body=message,
                        created_at=created_at,
                        url=item.html_url,
                        # GitHub account the author email is linked to, if any
                        author_login=item.author.login if item.author else "",
                    )
                )
            return commits

        try:
            return await self._call(fetch, project=project_id)
        except RemoteAPIError as e:
            raise FetchError(
                str(e),
                project_id=project_id,
                status_code=e.status_code,
                context=e.context,
            ) from e

    async def list_issues(self, project_id: str, created_after: datetime) -> list[Issue]:
        """
        List issues of a repository created after a timestamp.

        GitHub filters ``since`` on the update time, so the result is narrowed
        to issues created after ``created_after``. Pull requests are dropped.

        Args:
            project_id: Full repository name (owner/repo)
            created_after: Exclusive lower bound of the creation time

        Returns:
            List of issues, oldest first

        Raises:
            FetchError: If the listing fails
        """
        bound = ensure_utc(created_after)

        def fetch() -> list[Issue]:
            repo = self._github.get_repo(project_id, lazy=True)
            issues = []
            for item in repo.get_issues(
                state="all", since=bound, sort="created", direction="asc"
            ):
                if item.pull_request is not None:
                    continue
                if ensure_utc(item.created_at) <= bound:
                    continue
                issues.append(
                    Issue(
                        title=item.title,
                        author_name=item.user.login if item.user else "",
                        body=item.body or "",
                        created_at=item.created_at,
                        url=item.html_url,
                    )
                )
            return issues

        try:
            return await self._call(fetch, project=project_id)
        except RemoteAPIError as e:
            raise FetchError(
                str(e),
                project_id=project_id,
                status_code=e.status_code,
                context=e.context,
            ) from e

    def close(self) -> None:
        """Close the underlying HTTP connections."""
        self._github.close()


def _primary_email(emails: list[Any]) -> str:
    """Pick the primary verified address, or any verified one."""
    verified = [item for item in emails if item.verified]
    for item in verified:
        if item.primary:
            return item.email
    return verified[0].email if verified else ""


class GitHubClient:
    """
    Factory of authenticated GitHub sessions.

    One client serves all users. It holds no credential of its own; each cycle
    authenticates with the token stored in the user's record.
    """

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the GitHub client.

        Args:
            settings: Application settings
        """
        self.api_url = settings.github_api_url
        self.timeout = int(settings.http_timeout_seconds)

    def _connect(self, credential: str) -> tuple[Github, AuthenticatedUser]:
        github = Github(
            auth=Auth.Token(credential), base_url=self.api_url, timeout=self.timeout
        )
        user = github.get_user()
        # The user object is lazy, reading the login performs the request
        _ = user.login
        return github, user

    async def authenticate(self, credential: str) -> GitHubSession:
        """
        Authenticate with a user credential.

        Args:
            credential: GitHub personal access token

        Returns:
            Authenticated session

        Raises:
            AuthenticationError: If the token is missing, invalid or expired
            RemoteAPIError: If GitHub could not be reached
        """
        if not credential:
            raise AuthenticationError("No GitHub token configured")

        try:
            github, user = await asyncio.to_thread(self._connect, credential)
        except BadCredentialsException as e:
            raise AuthenticationError(f"Bad credentials: {e}") from e
        except RateLimitExceededException as e:
            logger.warning("GitHub rate limit exceeded during authentication")
            raise RemoteAPIError(
                f"Rate limit exceeded: {e}", status_code=e.status
            ) from e
        except GithubException as e:
            if e.status in (401, 403):
                raise AuthenticationError(f"Token rejected: {e}") from e
            logger.error("GitHub authentication request failed", error=str(e))
            raise RemoteAPIError(
                f"Failed to authenticate with GitHub: {e}", status_code=e.status
            ) from e
        except OSError as e:
            logger.error("GitHub unreachable", error=str(e))
            raise RemoteAPIError(f"GitHub unreachable: {e}") from e

        logger.debug("GitHub authentication successful", login=user.login)
        return GitHubSession(github, user)
