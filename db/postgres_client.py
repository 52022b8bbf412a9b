# db/postgres_client.py
import logging
import time
from typing import List

import psycopg
from psycopg_pool import ConnectionPool

from config import HEALTH_PING_TIMEOUT, MAX_PRODUCTS, PRODUCTS_QUERY_TIMEOUT
from errors import QueryError
from models import ProductRow
from row_marshaler import marshal_rows

LOG = logging.getLogger(__name__)

# Newest first; id breaks created_at ties so repeated reads are stable.
PRODUCTS_QUERY = f"""
    SELECT *
    FROM products
    ORDER BY created_at DESC, id ASC
    LIMIT {MAX_PRODUCTS}
"""

PING_QUERY = "SELECT 1"
SET_TIMEOUT = "SELECT set_config('statement_timeout', %s, true)"


def _timeout_ms(seconds: float) -> str:
    return str(max(1, int(seconds * 1000)))


class Database:
    """Shared PostgreSQL handle; the pool is safe to use from every request thread.

    Each call gets one budget: waiting for a pooled connection and running
    the statement together stay within `timeout`.
    """

    def __init__(self, conninfo: str, min_size: int = 1, max_size: int = 10,
                 connect_timeout: int = 2):
        self.pool = ConnectionPool(
            conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"connect_timeout": connect_timeout},
            open=False,
            name="products",
        )
        self.clock = time.monotonic

    def open(self) -> None:
        # do not block: an unreachable database is reported by /health, not fatal
        self.pool.open(wait=False)

    def close(self) -> None:
        self.pool.close()

    def _remaining_ms(self, deadline: float) -> str:
        return _timeout_ms(deadline - self.clock())

    def ping(self, timeout: float = HEALTH_PING_TIMEOUT) -> bool:
        deadline = self.clock() + timeout
        try:
            with self.pool.connection(timeout=timeout) as conn:
                conn.execute(SET_TIMEOUT, (self._remaining_ms(deadline),))
                conn.execute(PING_QUERY)
            return True
        except psycopg.Error as e:
            LOG.debug("database ping failed: %s", e)
            return False

    def fetch_products(self, timeout: float = PRODUCTS_QUERY_TIMEOUT) -> List[ProductRow]:
        deadline = self.clock() + timeout
        try:
            with self.pool.connection(timeout=timeout) as conn:
                conn.execute(SET_TIMEOUT, (self._remaining_ms(deadline),))
                with conn.cursor() as cur:
                    cur.execute(PRODUCTS_QUERY)
                    return marshal_rows(cur)
        except psycopg.Error as e:
            raise QueryError(f"Failed to query database: {e}") from e
