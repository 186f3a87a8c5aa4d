"""
Database Connection Pool

Opening a PostgreSQL connection costs tens of milliseconds, and the trend
bucketer issues one query per calendar day (up to 90 for the longest period)
in parallel. The pool keeps a bounded set of warm connections and hands them
out to those queries.

Every checkout and every statement is bounded by a timeout; a pool that cannot
produce a working connection surfaces StoreUnavailable to the caller, who
decides whether to retry.
"""

import logging
from typing import Optional, Dict, Any
from contextlib import contextmanager
import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout
from fanpulse.errors import RecordRejected, StoreUnavailable

logger = logging.getLogger(__name__)


class DatabasePool:
    """
    Manages a pool of database connections.

    - min_size: connections kept open even when idle
    - max_size: hard cap; callers wait (up to timeout) when all are busy
    """

    def __init__(self, database_url: str, min_size: int = 2, max_size: int = 10,
                 timeout_seconds: float = 15.0):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self.timeout_seconds = timeout_seconds
        self._pool: Optional[ConnectionPool] = None

        logger.info(
            f"Database pool configured: "
            f"min={min_size}, max={max_size}, timeout={timeout_seconds}s"
        )

    def initialize(self):
        """
        Create the pool and verify one connection works.

        Kept separate from __init__ so configuration errors and connection
        errors are reported differently.
        """
        statement_timeout_ms = int(self.timeout_seconds * 1000)
        try:
            self._pool = ConnectionPool(
                self.database_url,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout_seconds,
                max_idle=300,  # Close idle connections after 5 minutes
                max_lifetime=3600,  # Recycle connections after 1 hour
                check=ConnectionPool.check_connection,
                kwargs={
                    "autocommit": True,
                    "connect_timeout": max(1, int(self.timeout_seconds)),
                    "options": f"-c statement_timeout={statement_timeout_ms}",
                },
                open=True,
            )

            with self._pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")

            logger.info("Database pool initialized and healthy")

        except (psycopg.OperationalError, PoolTimeout) as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise StoreUnavailable(f"Database unreachable: {e}") from e

    @contextmanager
    def get_connection(self):
        """
        Check out a connection for the duration of the block.

        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT ...")
        """
        if self._pool is None:
            raise RuntimeError(
                "Pool not initialized! Call initialize() first."
            )

        try:
            with self._pool.connection() as connection:
                yield connection
        except (psycopg.OperationalError, PoolTimeout) as e:
            logger.error(f"Database error: {e}")
            raise StoreUnavailable(f"Database unavailable: {e}") from e
        except (psycopg.DataError, psycopg.IntegrityError) as e:
            logger.warning(f"Database rejected data: {e}")
            raise RecordRejected(f"Database rejected data: {e}") from e
        except psycopg.Error as e:
            logger.error(f"Database error: {e}")
            raise StoreUnavailable(f"Database error: {e}") from e

    def get_stats(self) -> Dict[str, Any]:
        """Pool statistics for the health endpoint."""
        if self._pool is None:
            return {
                "status": "not_initialized",
                "error": "Pool has not been initialized"
            }

        pool_size = self._pool.get_stats()
        return {
            "status": "healthy",
            "pool_size": pool_size.get("pool_size", 0),
            "pool_available": pool_size.get("pool_available", 0),
            "requests_waiting": pool_size.get("requests_waiting", 0),
            "min_size": self.min_size,
            "max_size": self.max_size,
        }

    def close(self):
        """Close the pool and all its connections."""
        if self._pool:
            self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    def health_check(self) -> bool:
        """True if a connection can be checked out and can run a query."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    result = cur.fetchone()
                    return result[0] == 1

        except StoreUnavailable as e:
            logger.error(f"Health check failed: {e}")
            return False
