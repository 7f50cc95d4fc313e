"""Read-only database access for the clinic catalog."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from psycopg2 import extras, pool

logger = logging.getLogger(__name__)

STATEMENT_TIMEOUT_MS = 10_000

_SELECT_CLINICS = """
SELECT
    id::text AS id,
    name,
    address,
    location,
    pincode,
    city,
    lat,
    lng,
    rating,
    verified,
    status,
    services,
    specialization,
    phone,
    website
FROM clinics
ORDER BY created_at, id;
"""


class ClinicDatabase:
    """Owns a small connection pool; built at startup and closed at shutdown."""

    def __init__(self, database_url: str, minconn: int = 1, maxconn: int = 5) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def init_pool(self) -> pool.SimpleConnectionPool:
        """Initialise and return the connection pool."""
        if self._pool is None:
            self._pool = pool.SimpleConnectionPool(
                self._minconn,
                self._maxconn,
                dsn=self._database_url,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
        finally:
            pg_pool.putconn(conn)

    def fetch_clinic_rows(self) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SET statement_timeout = %s", (STATEMENT_TIMEOUT_MS,))
                cur.execute(_SELECT_CLINICS)
                rows = [dict(row) for row in cur.fetchall()]
            conn.rollback()
        logger.debug("Fetched %d clinic rows", len(rows))
        return rows

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
