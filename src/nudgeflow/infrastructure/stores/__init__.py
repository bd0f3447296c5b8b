"""Thread store backends."""

from __future__ import annotations

from loguru import logger

from nudgeflow.infrastructure.settings import Settings, get_settings
from nudgeflow.infrastructure.stores.sql_thread_store import SqlThreadStore
from nudgeflow.infrastructure.stores.sqlite_thread_store import SQLiteThreadStore


def create_thread_store(settings: Settings | None = None) -> SqlThreadStore:
    """Build the store selected by `store_backend`."""
    settings = settings or get_settings()

    if settings.store_backend == "postgres":
        from nudgeflow.infrastructure.stores.postgres_thread_store import PostgresThreadStore

        logger.info(f"Using PostgreSQL thread store at {settings.postgres_host}:{settings.postgres_port}")
        return PostgresThreadStore(settings.postgres_dsn)

    logger.info(f"Using SQLite thread store at {settings.sqlite_db_path}")
    return SQLiteThreadStore(settings.sqlite_db_path)


__all__ = [
    "SqlThreadStore",
    "SQLiteThreadStore",
    "create_thread_store",
]
