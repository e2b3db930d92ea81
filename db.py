import psycopg2
from psycopg2.pool import ThreadedConnectionPool
from contextlib import contextmanager
from settings import settings
import psycopg2.extras
_pool: ThreadedConnectionPool | None = None


def init_pool():
    """
    Initialize the PostgreSQL connection pool.
    Called once at process startup. Payouts of one batch persist from
    worker threads, so the pool must be the thread-safe variant.
    """
    psycopg2.extras.register_uuid()
    global _pool
    if _pool is None:
        _pool = ThreadedConnectionPool(
            minconn=1,
            maxconn=max(10, settings.PAYROLL_BATCH_SIZE * 2),
            dsn=settings.DATABASE_URL,
            connect_timeout=5,
        )


def close_pool():
    """
    Gracefully close all pooled connections.
    """
    global _pool
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
        # Safety: a worker that dies mid-payout must not hold row locks
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = '5000ms';")
            cur.execute("SET idle_in_transaction_session_timeout = '5000ms';")
            cur.execute("SET application_name = 'payroll_engine';")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        _pool.putconn(conn)


def ping() -> tuple[bool, str | None]:
    """Round-trip to the database; returns (ok, error) and never raises."""
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"
