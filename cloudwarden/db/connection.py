"""
PostgreSQL connection pool.

Usage:
    from cloudwarden.db import get_connection

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")

The block commits on normal exit and rolls back if it raises.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

from cloudwarden.config import DatabaseConfig, get_config

logger = logging.getLogger(__name__)

_pool: psycopg2.pool.ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def get_pool(
    db: DatabaseConfig | None = None, minconn: int = 1, maxconn: int = 10
) -> psycopg2.pool.ThreadedConnectionPool:
    """Return the process-wide pool, creating it on first use."""
    global _pool
    with _pool_lock:
        if _pool is not None and not _pool.closed:
            return _pool

        cfg = db or get_config().db
        logger.info("Opening PostgreSQL pool for %s@%s/%s", cfg.user, cfg.host or "socket", cfg.name)
        try:
            _pool = psycopg2.pool.ThreadedConnectionPool(minconn, maxconn, **cfg.dict)
        except psycopg2.OperationalError as e:
            raise ConnectionError(
                f"Cannot connect to PostgreSQL database {cfg.name!r}: {e}. "
                "Check the CLOUDWARDEN_DB_* environment variables."
            ) from e
        return _pool


@contextmanager
def get_connection() -> Generator[psycopg2.extensions.connection, None, None]:
    pool = get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.closeall()
            _pool = None
