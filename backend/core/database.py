from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy import text, Column, DateTime, Numeric, String, func, TypeDecorator, CHAR
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.exc import SQLAlchemyError
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

from core.logging import structured_logger
from core.exceptions.api_exceptions import DatabaseException, APIException

Base = declarative_base()
CHAR_LENGTH = 255


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type, otherwise uses
    CHAR(36), storing as stringified UUID values with hyphens.
    """
    impl = CHAR

    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(UUID())
        else:
            return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        else:
            # Always return UUID object for consistency
            if not isinstance(value, uuid.UUID):
                return uuid.UUID(value)
            return value


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    Naive values are taken to be UTC. Backends without timezone support
    store the naive UTC value so range comparisons stay consistent.
    """
    impl = DateTime(timezone=True)

    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name != 'postgresql':
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DecimalType(TypeDecorator):
    """Exact decimal column.

    NUMERIC on PostgreSQL; a decimal string elsewhere (SQLite would
    otherwise hand values back as floats).
    """
    impl = Numeric

    cache_ok = True

    def __init__(self, precision: int = 19, scale: int = 4, **kwargs):
        self.precision = precision
        self.scale = scale
        super().__init__(**kwargs)

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(Numeric(self.precision, self.scale, asdecimal=True))
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        value = Decimal(str(value)) if not isinstance(value, Decimal) else value
        if dialect.name == 'postgresql':
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


class BaseModel(Base):
    """Base model with UUID primary key and timestamps"""
    __abstract__ = True

    id = Column(GUID(), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(UTCDateTime(), default=utc_now, server_default=func.now())
    updated_at = Column(UTCDateTime(), onupdate=utc_now)


class DatabaseManager:
    """Database manager owning the async engine and session factory."""

    def __init__(self):
        self.engine = None
        self.session_factory = None
        self._connection_failures = 0
        self._last_health_check = 0

    def initialize(self, database_uri: str, env_is_local: bool = False):
        """Initializes the database engine and session factory."""
        if self.engine and self.session_factory:  # Prevent re-initialization
            return

        engine_kwargs = {"echo": env_is_local, "pool_pre_ping": True}
        if database_uri.startswith("postgresql"):
            engine_kwargs.update(
                pool_recycle=3600,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
            )

        engine = create_async_engine(database_uri, **engine_kwargs)
        session_factory = sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False
        )
        self.set_engine_and_session_factory(engine, session_factory)

    def set_engine_and_session_factory(self, engine, session_factory):
        self.engine = engine
        self.session_factory = session_factory

    async def create_all(self):
        """Create every campaign table. Used by local setups and tests."""
        if not self.engine:
            raise DatabaseException(message="Database not initialized.")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        if self.engine:
            await self.engine.dispose()
        self.engine = None
        self.session_factory = None

    async def health_check(self) -> dict:
        """Perform database health check."""
        if not self.engine or not self.session_factory:
            return {"status": "uninitialized", "message": "Database not initialized."}

        start_time = time.time()

        try:
            async with self.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.fetchone()

                response_time = (time.time() - start_time) * 1000

                self._connection_failures = 0
                self._last_health_check = time.time()

                return {
                    "status": "healthy",
                    "response_time_ms": response_time,
                    "connection_failures": self._connection_failures,
                    "last_check": self._last_health_check,
                }

        except SQLAlchemyError as e:
            self._connection_failures += 1
            response_time = (time.time() - start_time) * 1000

            structured_logger.error(
                message="Database health check failed",
                metadata={
                    "response_time_ms": response_time,
                    "connection_failures": self._connection_failures,
                    "error_type": type(e).__name__,
                },
                exception=e,
            )

            return {
                "status": "unhealthy",
                "response_time_ms": response_time,
                "connection_failures": self._connection_failures,
                "error": str(e),
                "last_check": time.time(),
            }


# Global database manager instance
db_manager = DatabaseManager()


def initialize_db(database_uri: Optional[str] = None, env_is_local: Optional[bool] = None):
    """Initializes the database manager from explicit values or settings."""
    from core.config import settings

    db_manager.initialize(
        database_uri or settings.SQLALCHEMY_DATABASE_URI,
        settings.is_local if env_is_local is None else env_is_local,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; persistence errors become DatabaseException."""
    if not db_manager.session_factory:
        raise DatabaseException(message="Database session factory not initialized.")

    async with db_manager.session_factory() as session:
        try:
            yield session

        except APIException:
            await session.rollback()
            raise

        except SQLAlchemyError as e:
            await session.rollback()
            structured_logger.error(
                message=f"Database error in session: {str(e)}",
                exception=e,
            )
            raise DatabaseException(
                message=f"Database error: {str(e)}",
            )
