"""
PostgreSQL client for the profile store.

psycopg2 ThreadedConnectionPool; safe to use from asyncio.to_thread workers.
Row-level security is driven by the identity in utils.user_context: each
checkout sets app.current_user_id, and an empty value matches no rows.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import get_current_user_id

logger = logging.getLogger(__name__)


class PostgresClient:
    """
    Pooled PostgreSQL access with the RLS identity taken from contextvar.

    Usage:
        db = PostgresClient(database_url)
        with user_context(identity_id):
            row = db.execute_single("SELECT * FROM users WHERE id = %s", (identity_id,))
    """

    def __init__(self, database_url: str, min_connections: int = 1, max_connections: int = 10):
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=min_connections,
            maxconn=max_connections,
            dsn=database_url,
            connect_timeout=30,
        )
        psycopg2.extras.register_default_jsonb(globally=True)
        logger.info("Postgres connection pool created")

    @contextmanager
    def get_connection(self):
        """Check out a connection scoped to the current identity."""
        conn = self._pool.getconn()
        try:
            user_id = get_current_user_id()
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT set_config('app.current_user_id', %s, false)",
                    (str(user_id) if user_id is not None else "",),
                )
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    @staticmethod
    def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
        """UUIDs are passed as text."""
        if params is None:
            return None
        if isinstance(params, dict):
            return {k: str(v) if isinstance(v, UUID) else v for k, v in params.items()}
        return tuple(str(v) if isinstance(v, UUID) else v for v in params)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Run a statement and commit. Returns row dicts (empty list if none)."""
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, self._convert_params(params))
                rows = [dict(row) for row in cur.fetchall()] if cur.description else []
            conn.commit()
            return rows

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Run a statement, return first row or None."""
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def close(self) -> None:
        """Close every pooled connection."""
        self._pool.closeall()
        logger.info("Postgres connection pool closed")
