"""Database base configuration and session management."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, MetaData, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.types import TypeDecorator

from ...utils.datetime import ensure_utc, utc_now

# Naming convention for constraints (helps with Alembic migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always round-trips as UTC.

    SQLite stores datetimes without an offset; values are converted to UTC on
    the way in and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Base class for all database models."""

    metadata = metadata

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class IntPKMixin:
    """Autoincrement integer primary key."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


# Database engine and session (configured at runtime)
engine = None
SessionLocal: "sessionmaker[Session] | None" = None


def init_db(database_url: str = "sqlite:///./quotetrack.db") -> None:
    """Initialize database engine and session factory."""
    global engine, SessionLocal

    engine = create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    """Return a new session from the configured factory (caller closes it)."""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal()

