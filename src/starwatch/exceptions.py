"""
Custom exceptions for Starwatch.

This module defines the exception classes used to separate the failure modes
of a poll cycle: authentication, remote listing, notification delivery and
persistence.
"""

from typing import Any


class StarwatchError(Exception):
    """Base exception for Starwatch errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or "STARWATCH_ERROR"
        self.context = context or {}


class AuthenticationError(StarwatchError):
    """Exception for invalid or expired credentials."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "AUTHENTICATION_ERROR", context)


class RemoteAPIError(StarwatchError):
    """Exception for remote repository API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
        code: str = "REMOTE_API_ERROR",
    ):
        super().__init__(message, code, context)
        self.status_code = status_code


class ProjectListError(RemoteAPIError):
    """Exception raised when the subscribed projects cannot be listed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, context, code="PROJECT_LIST_ERROR")


class FetchError(RemoteAPIError):
    """Exception raised when commits or issues of one project cannot be fetched."""

    def __init__(
        self,
        message: str,
        project_id: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, context, code="FETCH_ERROR")
        self.project_id = project_id


class DeliveryError(StarwatchError):
    """Exception for rejected notifications."""

    def __init__(
        self,
        message: str,
        user_id: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "DELIVERY_ERROR", context)
        self.user_id = user_id


class PersistenceError(StarwatchError):
    """Exception for user store errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "PERSISTENCE_ERROR", context)


class ConfigurationError(StarwatchError):
    """Exception for configuration related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)
