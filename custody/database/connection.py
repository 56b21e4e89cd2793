"""
PostgreSQL connection pool for the deposit store.

One pool per process. The API server and the sweep worker each create their
own on first use.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional
from psycopg2.extensions import connection as PgConnection
from psycopg2.pool import ThreadedConnectionPool
from custody import config

logger = logging.getLogger(__name__)

APPLICATION_NAME = "deposit-custody"

_connection_pool: Optional[ThreadedConnectionPool] = None


def get_connection_pool() -> ThreadedConnectionPool:
    """
    Raises:
        psycopg2.Error: If the database is unreachable
    """
    global _connection_pool
    if _connection_pool is None:
        try:
            _connection_pool = ThreadedConnectionPool(
                config.POSTGRES_MIN_CONNECTIONS,
                config.POSTGRES_MAX_CONNECTIONS,
                config.POSTGRES_URL,
                application_name=APPLICATION_NAME,
                options=f"-c statement_timeout={config.POSTGRES_STATEMENT_TIMEOUT_MS}"
            )
        except Exception as e:
            # POSTGRES_URL holds the password; log the error type only
            logger.error(f"Could not connect to PostgreSQL: {e.__class__.__name__}")
            raise
        logger.info(
            f"PostgreSQL pool ready ({config.POSTGRES_MIN_CONNECTIONS}-"
            f"{config.POSTGRES_MAX_CONNECTIONS} connections)"
        )
    return _connection_pool


@contextmanager
def get_db_connection() -> Iterator[PgConnection]:
    """
    Borrow a pooled connection for one transaction.

    The transaction commits when the block exits normally and rolls back
    when it raises; the connection always goes back to the pool.
    """
    pool = get_connection_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def close_connection_pool() -> None:
    global _connection_pool
    if _connection_pool is None:
        return
    _connection_pool.closeall()
    _connection_pool = None
    logger.info("PostgreSQL pool closed")
