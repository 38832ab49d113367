import threading
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from services import metrics
from settings import settings

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def init_pool():
    """
    Initialize the PostgreSQL connection pool.
    Worker threads share it, so it has to be the threaded variant.
    """
    psycopg2.extras.register_uuid()
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadedConnectionPool(
                minconn=settings.DB_POOL_MIN,
                maxconn=settings.DB_POOL_MAX,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
            )


def close_pool():
    """
    Gracefully close all pooled connections.
    """
    global _pool
    with _pool_lock:
        if _pool:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn():
    """
    Provides a transactional DB connection.
    Auto-commits on success, rolls back on error.
    """
    if _pool is None:
        init_pool()

    conn = _pool.getconn()

    try:
        # Safety: never allow long-running queries
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = %s;", (f"{int(settings.DB_STATEMENT_TIMEOUT_MS)}ms",))
            cur.execute("SET application_name = 'creator_payouts';")

        yield conn
        conn.commit()
        metrics.commit_pending(conn)

    except Exception:
        metrics.discard_pending(conn)
        conn.rollback()
        raise

    finally:
        _pool.putconn(conn)
