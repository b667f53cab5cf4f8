"""
Notification texts for Starwatch.

Messages are sent with Telegram's legacy Markdown parse mode.
"""

from .models import Commit, Issue, Project, UserRecord


def censor_string(s: str, visible: int = 5) -> str:
    """
    Cover every character after the first ``visible`` ones with a star.

    Example: abcdefghij -> abcde*****
    """
    if len(s) > visible:
        return s[:visible] + "*" * (len(s) - visible)
    return s


def cut_string(s: str, limit: int) -> str:
    """Cut a string exceeding ``limit`` characters, ending it with three dots."""
    if len(s) > limit:
        return s[: max(limit - 3, 0)] + "..."
    return s


def commit_message(project: Project, commit: Commit, limit: int = 150) -> str:
    """Build the notification for a new commit."""
    description = cut_string(commit.body, limit)
    return (
        f"New Commit 🖥 in {project.name}\n"
        f"*{commit.title}*\n"
        f"{commit.author_name} <{commit.author_email}>\n"
        f"{description}\n"
        f"{commit.url}"
    )


def issue_message(project: Project, issue: Issue, limit: int = 150) -> str:
    """Build the notification for a new issue."""
    description = cut_string(issue.body, limit)
    return (
        f"New Issue ✉️ in {project.name}\n"
        f"*{issue.title}*\n"
        f"{issue.author_name}\n"
        f"{description}\n"
        f"{issue.url}"
    )


def token_error_message(user: UserRecord) -> str:
    return (
        "⚠️ Unable to log in with your saved GitHub token!\n"
        "Maybe your token expired recently?\n"
        f"Token: `{censor_string(user.credential)}`"
    )
