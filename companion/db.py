"""
Database Connection
===================

psycopg2 connection pooling for PostgreSQL + pgvector.

Tenant-scoped reads go through ``org_context`` which sets the row-level
security variables for the transaction.

Usage:
    db = Database(settings.database)
    with db.org_context(tenant_id, user_id) as conn:
        cur = conn.cursor()
        ...
    db.close()
"""

import logging
from contextlib import contextmanager
from typing import Optional, Any, Dict, Iterator

import psycopg2
from psycopg2 import pool as pg_pool

from .config import DatabaseConfig

logger = logging.getLogger(__name__)


class Database:
    """Owns a ThreadedConnectionPool, created on first use."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[pg_pool.ThreadedConnectionPool] = None

    @property
    def pool(self) -> pg_pool.ThreadedConnectionPool:
        if self._pool is None:
            params = self.config.connection_dict
            self._pool = pg_pool.ThreadedConnectionPool(
                self.config.pool_min_size,
                self.config.pool_max_size,
                **params,
            )
            logger.info(f"DB pool created: {params['host']}:{params['port']}/{params['dbname']}")
        return self._pool

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("DB pool closed")

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Pooled connection wrapped in a transaction.

        Commits on success, rolls back if the block raises.
        """
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    @contextmanager
    def org_context(self, org_id: str, user_id: Optional[str] = None) -> Iterator[Any]:
        """Connection with the RLS tenant (and optionally user) set for this transaction."""
        with self.connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT set_config('app.current_org_id', %s, true)", (org_id,))
            if user_id:
                cur.execute("SELECT set_config('app.current_user_id', %s, true)", (user_id,))
            cur.close()
            yield conn

    def check_health(self) -> Dict[str, Any]:
        """
        Check database health. Returns status dict.
        Returns 'disconnected' instead of raising if the DB is not reachable.
        """
        try:
            with self.connection() as conn:
                cur = conn.cursor()
                cur.execute("SELECT version(), pg_database_size(current_database())")
                row = cur.fetchone()
                cur.close()
        except psycopg2.Error as e:
            logger.warning(f"DB health check failed: {e}")
            return {"status": "disconnected", "error": str(e)}

        version = row[0].split(",")[0] if row[0] else "unknown"
        size_mb = round(row[1] / 1024 / 1024, 2) if row[1] else 0
        return {"status": "connected", "version": version, "size_mb": size_mb}
