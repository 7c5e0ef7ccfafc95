"""
Core database utilities - connection pool and error translation.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from app.core.exceptions import DatabaseUnavailable

logger = logging.getLogger(__name__)


class DatabaseCore:
    """Core database functionality - connection pool and base operations."""

    def __init__(
        self,
        database_url: str | None,
        *,
        min_connections: int = 1,
        max_connections: int = 5,
        wait_timeout: float = 30,
    ):
        """Initialize PostgreSQL connection pool."""
        if not database_url:
            raise DatabaseUnavailable("DATABASE_URL is not configured")
        self.database_url = database_url

        safe_url = database_url.split("@")[1] if "@" in database_url else database_url
        logger.info("Connecting to PostgreSQL at ...@%s", safe_url)

        self.pool = ConnectionPool(
            conninfo=database_url,
            min_size=min_connections,
            max_size=max_connections,
            timeout=wait_timeout,
            kwargs={"row_factory": dict_row},
            open=True,
        )
        logger.info(
            "PostgreSQL connection pool created (min=%s, max=%s)", min_connections, max_connections
        )

    @contextmanager
    def get_connection(self) -> Iterator[psycopg.Connection]:
        """Context manager for database connections from pool.

        Connectivity failures surface as DatabaseUnavailable so callers fail
        hard instead of degrading.
        """
        try:
            with self.pool.connection() as conn:
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        except PoolTimeout as exc:
            logger.error("Database pool exhausted: %s", exc)
            raise DatabaseUnavailable("Database connection pool timed out") from exc
        except psycopg.OperationalError as exc:
            logger.error("Database unreachable: %s", exc)
            raise DatabaseUnavailable("Database is unreachable") from exc

    def ping(self) -> bool:
        with self.get_connection() as conn:
            conn.execute("SELECT 1")
        return True

    def close(self) -> None:
        """Close all connections in the pool."""
        if getattr(self, "pool", None):
            self.pool.close()
            logger.info("PostgreSQL connection pool closed")
