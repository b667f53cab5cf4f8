"""
User store abstraction for Starwatch.

Provides pluggable backends for the per-user records:
- Memory: dictionary of record copies, for tests and throwaway runs
- SQL: SQLAlchemy table, SQLite by default

Every backend guarantees atomic single-key overwrite and hands out copies, so
no two poll cycles ever share a record object.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, DateTime, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..exceptions import ConfigurationError, PersistenceError
from ..models import EPOCH, UserRecord, UserState, ensure_utc

logger = logging.getLogger(__name__)


class UserStore(ABC):
    """Abstract base class for user record storage."""

    @abstractmethod
    async def get(self, user_id: int) -> UserRecord | None:
        """
        Get a user record by id.

        Args:
            user_id: Chat identity of the user

        Returns:
            A copy of the stored record or None if not found
        """
        pass

    @abstractmethod
    async def get_all(self) -> list[UserRecord]:
        """
        Get all user records.

        Returns:
            Copies of all stored records, ordered by id
        """
        pass

    @abstractmethod
    async def put(self, record: UserRecord) -> None:
        """
        Create or overwrite a user record.

        Args:
            record: Record to store

        Raises:
            PersistenceError: If the record could not be written
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the store backend is healthy.

        Returns:
            True if healthy, False otherwise
        """
        pass

    async def get_or_create(self, user_id: int) -> UserRecord:
        """Get a user record, creating and storing a fresh one on first contact."""
        record = await self.get(user_id)
        if record is not None:
            return record

        record = UserRecord.new(user_id)
        await self.put(record)
        logger.info(f"Created new user {user_id}")
        return record

    async def close(self) -> None:
        """Release backend resources."""

    def get_stats(self) -> dict[str, Any]:
        """Get backend statistics."""
        return {"backend": type(self).__name__}


class InMemoryUserStore(UserStore):
    """In-memory user store."""

    def __init__(self) -> None:
        """Initialize in-memory user store."""
        self.users: dict[int, UserRecord] = {}

    async def get(self, user_id: int) -> UserRecord | None:
        """Get a user record from memory."""
        record = self.users.get(user_id)
        return record.copy() if record else None

    async def get_all(self) -> list[UserRecord]:
        """Get all user records from memory."""
        return [self.users[user_id].copy() for user_id in sorted(self.users)]

    async def put(self, record: UserRecord) -> None:
        """Store a copy of the record in memory."""
        self.users[record.id] = record.copy()  # Don't keep the caller's object
        logger.debug(f"Stored user {record.id}")

    async def health_check(self) -> bool:
        """Check if in-memory store is healthy (always true for memory)."""
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get memory store statistics."""
        return {"backend": type(self).__name__, "users_count": len(self.users)}


class Base(DeclarativeBase):
    pass


class UserRow(Base):
    """SQL representation of a user record."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    credential: Mapped[str] = mapped_column(String, default="")
    watermark: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=EPOCH)
    has_error: Mapped[bool] = mapped_column(Boolean, default=False)
    state: Mapped[str] = mapped_column(
        String(32), default=UserState.AWAITING_CREDENTIAL.value
    )

    def to_record(self) -> UserRecord:
        # SQLite drops the offset, the stored value is always UTC
        return UserRecord(
            id=self.id,
            credential=self.credential,
            watermark=ensure_utc(self.watermark),
            has_error=self.has_error,
            state=UserState(self.state),
        )

    @classmethod
    def from_record(cls, record: UserRecord) -> "UserRow":
        return cls(
            id=record.id,
            credential=record.credential,
            watermark=record.watermark,
            has_error=record.has_error,
            state=record.state.value,
        )


class SQLUserStore(UserStore):
    """User store backed by a SQLAlchemy database."""

    def __init__(self, database_url: str) -> None:
        """
        Initialize the SQL user store and create the schema.

        Args:
            database_url: SQLAlchemy database URL
        """
        self.database_url = database_url

        engine_kwargs: dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            # Sessions run in worker threads
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        try:
            self.engine = create_engine(database_url, **engine_kwargs)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to open user store: {e}", context={"url": database_url}
            ) from e

        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _get(self, user_id: int) -> UserRecord | None:
        with self.session_factory() as session:
            row = session.get(UserRow, user_id)
            return row.to_record() if row else None

    def _get_all(self) -> list[UserRecord]:
        with self.session_factory() as session:
            rows = session.scalars(select(UserRow).order_by(UserRow.id))
            return [row.to_record() for row in rows]

    def _put(self, record: UserRecord) -> None:
        with self.session_factory.begin() as session:
            session.merge(UserRow.from_record(record))

    async def get(self, user_id: int) -> UserRecord | None:
        """Get a user record from the database."""
        try:
            return await asyncio.to_thread(self._get, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to load user {user_id}: {e}", context={"user_id": user_id}
            ) from e

    async def get_all(self) -> list[UserRecord]:
        """Get all user records from the database."""
        try:
            return await asyncio.to_thread(self._get_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load users: {e}") from e

    async def put(self, record: UserRecord) -> None:
        """Insert or update a user record in one transaction."""
        try:
            await asyncio.to_thread(self._put, record)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to save user {record.id}: {e}",
                context={"user_id": record.id},
            ) from e
        logger.debug(f"Stored user {record.id}")

    async def health_check(self) -> bool:
        """Check that the database answers a trivial query."""

        def ping() -> None:
            with self.engine.connect() as connection:
                connection.exec_driver_sql("SELECT 1")

        try:
            await asyncio.to_thread(ping)
            return True
        except SQLAlchemyError as e:
            logger.error(f"User store health check failed: {e}")
            return False

    async def close(self) -> None:
        """Dispose of the connection pool."""
        self.engine.dispose()

    def get_stats(self) -> dict[str, Any]:
        """Get SQL store statistics."""
        return {"backend": type(self).__name__, "url": self.engine.url.render_as_string()}


class UserStoreFactory:
    """Factory for creating the configured user store."""

    @staticmethod
    def create_store(backend: str, database_url: str | None = None) -> UserStore:
        """
        Create user store instance based on the configured backend.

        Args:
            backend: Store backend ('sql' or 'memory')
            database_url: Database URL, required for the 'sql' backend

        Returns:
            UserStore instance

        Raises:
            ConfigurationError: If the backend is not supported
        """
        backend = backend.lower()

        if backend == "memory":
            logger.info("Creating in-memory user store")
            return InMemoryUserStore()
        elif backend == "sql":
            if not database_url:
                raise ConfigurationError("The sql user store requires a database URL")
            logger.info("Creating SQL user store")
            return SQLUserStore(database_url)
        else:
            raise ConfigurationError(
                f"Unknown store backend: {backend}. Supported backends: 'sql', 'memory'"
            )
