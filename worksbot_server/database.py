"""Database layer for encrypted secrets using SQLAlchemy (async).

Table structure:
- works_secrets: one row per logical secret
  - key: Secret name (primary key, e.g. ACCESS_TOKEN, REFRESH_TOKEN)
  - encrypted_value: ``hex(iv):hex(ciphertext)``, never plaintext
  - updated_at: Last write timestamp

Values arrive here already encrypted; this module never sees plaintext.
"""

import asyncio
from datetime import UTC, datetime

from sqlalchemy import DateTime, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Default timeout for database operations (seconds)
DEFAULT_TIMEOUT = 10.0


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class StoredSecret(Base):
    """An encrypted secret addressed by key."""

    __tablename__ = "works_secrets"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class Database:
    """Async SQLAlchemy access to the secrets table.

    Encapsulates the engine and session factory. Use dependency injection to
    provide instances to handlers. All operations are bounded by a
    configurable timeout (default 10 seconds).
    """

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT, echo: bool = False) -> None:
        """Initialize database with a SQLAlchemy async URL.

        Args:
            url: Database URL (e.g. sqlite+aiosqlite:///./worksbot.db)
            timeout: Timeout in seconds for database operations (default 10)
            echo: Log emitted SQL (debug only)
        """
        self._engine = create_async_engine(url, echo=echo)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        self._timeout = timeout

    async def init(self) -> None:
        """Create tables that do not exist yet."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self._engine.dispose()

    async def get_encrypted_value(self, key: str) -> str | None:
        """Return the stored encrypted value for key, or None if absent."""

        async def _get() -> str | None:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StoredSecret.encrypted_value).where(StoredSecret.key == key)
                )
                return result.scalar_one_or_none()

        return await asyncio.wait_for(_get(), timeout=self._timeout)

    async def upsert_encrypted_value(self, key: str, encrypted_value: str) -> None:
        """Insert or overwrite the encrypted value for key."""
        await self.upsert_encrypted_values({key: encrypted_value})

    async def upsert_encrypted_values(self, values: dict[str, str]) -> None:
        """Insert or overwrite several encrypted values in one transaction."""

        async def _upsert() -> None:
            async with self._session_factory() as session, session.begin():
                for key, encrypted_value in values.items():
                    await session.merge(
                        StoredSecret(
                            key=key,
                            encrypted_value=encrypted_value,
                            updated_at=datetime.now(UTC),
                        )
                    )

        await asyncio.wait_for(_upsert(), timeout=self._timeout)
