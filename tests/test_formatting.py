"""
Tests for notification texts.
"""

from datetime import UTC, datetime

import pytest

from starwatch.formatting import (
    censor_string,
    commit_message,
    cut_string,
    issue_message,
    token_error_message,
)
from starwatch.models import Commit, Issue, Project, UserRecord

PROJECT = Project(id="org/repo", name="org/repo", url="https://github.com/org/repo")
CREATED = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("abcdefghij", "abcde*****"),
        ("abcde", "abcde"),
        ("abc", "abc"),
        ("", ""),
    ],
)
def test_censor_string(value, expected):
    assert censor_string(value) == expected


def test_censor_string_keeps_length():
    token = "ghp_" + "x" * 36

    censored = censor_string(token)

    assert len(censored) == len(token)
    assert censored.startswith("ghp_x")
    assert set(censored[5:]) == {"*"}


@pytest.mark.parametrize(
    "value,limit,expected",
    [
        ("short", 150, "short"),
        ("a" * 10, 10, "a" * 10),
        ("a" * 11, 10, "aaaaaaa..."),
        ("abcdef", 2, "..."),
    ],
)
def test_cut_string(value, limit, expected):
    assert cut_string(value, limit) == expected


class TestCommitMessage:
    """Commit notifications."""

    def make_commit(self, body: str = "Fix the flux capacitor") -> Commit:
        return Commit(
            title="Fix the flux capacitor",
            author_name="Emmett Brown",
            author_email="doc@example.com",
            body=body,
            created_at=CREATED,
            url="https://github.com/org/repo/commit/abc123",
        )

    def test_layout(self):
        lines = commit_message(PROJECT, self.make_commit()).split("\n")

        assert lines == [
            "New Commit 🖥 in org/repo",
            "*Fix the flux capacitor*",
            "Emmett Brown <doc@example.com>",
            "Fix the flux capacitor",
            "https://github.com/org/repo/commit/abc123",
        ]

    def test_long_body_is_cut(self):
        message = commit_message(PROJECT, self.make_commit(body="x" * 400), limit=150)

        assert "x" * 147 + "..." in message
        assert "x" * 148 not in message


class TestIssueMessage:
    """Issue notifications."""

    def test_layout(self):
        issue = Issue(
            title="It does not start",
            author_name="marty",
            body="Steps to reproduce: turn the key",
            created_at=CREATED,
            url="https://github.com/org/repo/issues/7",
        )

        lines = issue_message(PROJECT, issue).split("\n")

        assert lines[0] == "New Issue ✉️ in org/repo"
        assert lines[1] == "*It does not start*"
        assert lines[2] == "marty"
        assert lines[-1] == "https://github.com/org/repo/issues/7"


def test_token_error_message_censors_token():
    user = UserRecord(id=1, credential="ghp_secret_token")

    message = token_error_message(user)

    assert "Unable to log in" in message
    assert "ghp_s***********" in message
    assert "secret" not in message
