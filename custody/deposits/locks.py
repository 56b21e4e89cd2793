"""
Per-address sweep locks.

At most one sweep per deposit address may be in flight, whether it comes
from the watcher, the HTTP API or the retry worker. Locks expire after a
TTL so a crashed process cannot block an address forever.
"""
import time
import logging
from custody.database.connection import get_db_connection

logger = logging.getLogger(__name__)


def acquire_sweep_lock(deposit_address: str, ttl: int = 120) -> bool:
    """
    Try to take the sweep lock for an address (non-blocking).

    Args:
        deposit_address: Derived deposit address
        ttl: Seconds before the lock lapses; must cover send plus confirmation

    Returns:
        False if another sweep holds the lock or the database is unavailable
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT cleanup_expired_sweep_locks()")

                # sweep_locks stores UTC wall-clock times
                lock_expiry = time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime(time.time() + ttl))
                cur.execute("""
                    INSERT INTO sweep_locks (deposit_address, expires_at)
                    VALUES (%s, %s)
                    ON CONFLICT (deposit_address) DO NOTHING
                    RETURNING deposit_address
                """, (deposit_address, lock_expiry))
                acquired = cur.fetchone() is not None
    except Exception as e:
        logger.error(f"Sweep lock unavailable for {deposit_address}: {e}")
        return False

    if not acquired:
        logger.debug(f"Sweep lock for {deposit_address} is held elsewhere")
    return acquired


def release_sweep_lock(deposit_address: str) -> None:
    """Drop the sweep lock; a no-op when it is not held."""
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM sweep_locks WHERE deposit_address = %s", (deposit_address,))
    except Exception as e:
        # Left to expire through its TTL
        logger.error(f"Failed to release sweep lock for {deposit_address}: {e}")
