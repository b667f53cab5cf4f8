"""
State management for Starwatch.

This package provides the user store with pluggable backends. The user
records, with their watermarks, are the only durable state of the service.
"""

from .manager import InMemoryUserStore, SQLUserStore, UserStore, UserStoreFactory

__all__ = [
    "UserStore",
    "UserStoreFactory",
    "InMemoryUserStore",
    "SQLUserStore",
]
