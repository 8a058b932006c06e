"""
Database configuration and session management.

Provides SQLAlchemy engine, session factory, and FastAPI dependency.
"""
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ddsportal.config import get_settings

settings = get_settings()

# Create SQLAlchemy engine
# SQLite doesn't support pool_size/max_overflow
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create declarative base for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.

    Yields:
        Database session that is automatically closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def insert_or_ignore(db: Session, model, **values) -> int:
    """
    Atomically insert a row unless it violates a unique constraint.

    Emits INSERT ... ON CONFLICT DO NOTHING on PostgreSQL and SQLite so that
    concurrent callers never produce duplicates and never see an
    IntegrityError.

    Returns:
        Number of rows inserted (0 when an existing row won).
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"insert_or_ignore is not supported on {dialect}")

    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing()
    result = db.execute(stmt)
    return result.rowcount or 0


def init_db() -> None:
    """Initialize database tables."""
    # Import models to ensure they're registered with Base
    from ddsportal.models import user  # noqa: F401
    from ddsportal.models import preferences  # noqa: F401
    from ddsportal.models import attachment  # noqa: F401
    from ddsportal.models import file_processing  # noqa: F401

    Base.metadata.create_all(bind=engine)
