"""Database session management."""

from collections.abc import Generator
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from stockledger.core.config import Settings, settings


def engine_options(config: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` under ``config``.

    SQLite connections are shared across threads by the test client and the
    request pool; other databases get a sized connection pool.
    """
    if config.database_url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "echo": config.sql_echo,
            "pool_pre_ping": True,
            "pool_recycle": 1800,
        }
    return {
        "echo": config.sql_echo,
        "pool_size": config.db_pool_size,
        "max_overflow": config.db_max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": config.db_pool_recycle,
    }


engine = create_engine(settings.database_url, **engine_options(settings))


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Turn on FK enforcement for every new SQLite connection of ``target_engine``."""

    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if settings.database_url.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]
