"""
Deposit request persistence.

Handles derivation index allocation, deposit creation, verification and sweep
status updates, and querying.
"""
import logging
from typing import Optional, Dict, Any, List
from psycopg2.extras import RealDictCursor
from custody import config
from custody.database.connection import get_db_connection
from custody.solana.model import DepositRequest, EncodedSigningKey, SweepResult

logger = logging.getLogger(__name__)


def reserve_derivation_index() -> int:
    """
    Allocate the next unused derivation index.

    Indices come from a PostgreSQL sequence, so concurrent requests never
    receive the same index.
    """
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT nextval('deposit_derivation_index_seq')")
            return int(cur.fetchone()[0])


def insert_deposit_request(
    deposit_id: str,
    derivation_index: int,
    deposit_address: str,
    expected_amount: int,
    encoded_key: EncodedSigningKey,
    reference: Optional[str] = None,
    expires_in: Optional[int] = None
) -> Dict[str, Any]:
    """
    Insert a new deposit request.

    Args:
        deposit_id: Deposit request id (UUID)
        derivation_index: Index the deposit address was derived from
        deposit_address: Derived deposit address
        expected_amount: Expected payment in lamports
        encoded_key: Tagged signing material of the deposit address
        reference: Optional caller reference (order id, user id)
        expires_in: Seconds until the request expires

    Returns:
        Inserted deposit request row

    Raises:
        psycopg2.Error: If database operation fails
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    INSERT INTO deposit_requests (
                        id, derivation_index, deposit_address, expected_amount,
                        derived_private_key, key_encoding, reference,
                        sweep_status, created_at, updated_at, expires_at
                    ) VALUES (
                        %s, %s, %s, %s, %s, %s, %s, 'pending', NOW(), NOW(),
                        CASE WHEN %s::INTEGER IS NULL THEN NULL
                             ELSE NOW() + make_interval(secs => %s::INTEGER) END
                    )
                    RETURNING *
                """, (
                    deposit_id, derivation_index, deposit_address, expected_amount,
                    encoded_key.data, encoded_key.encoding, reference,
                    expires_in, expires_in
                ))
                row = dict(cur.fetchone())
                _normalize_timestamps(row)
                logger.debug(f"Inserted deposit request {deposit_id} (index {derivation_index})")
                return row
    except Exception as e:
        logger.error(f"Failed to insert deposit request: {e}")
        raise


def get_deposit_request(deposit_id: str) -> Optional[Dict[str, Any]]:
    """
    Get a deposit request, including its encoded signing material.

    Returns:
        Deposit request row or None if not found
    """
    with get_db_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT * FROM deposit_requests
                WHERE id = %s
            """, (deposit_id,))

            row = cur.fetchone()
            if not row:
                return None

            deposit = dict(row)
            _normalize_timestamps(deposit)
            return deposit


def mark_payment_verified(deposit_id: str, transaction_signature: Optional[str], amount_received: int) -> None:
    """Record a verified payment."""
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE deposit_requests
                    SET payment_verified = TRUE,
                        transaction_signature = %s,
                        actual_amount_received = %s,
                        updated_at = NOW()
                    WHERE id = %s
                """, (transaction_signature, amount_received, deposit_id))
    except Exception as e:
        logger.error(f"Failed to mark deposit {deposit_id} verified: {e}")
        raise


def mark_sweep_in_progress(deposit_id: str) -> None:
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE deposit_requests
                    SET sweep_status = 'in_progress', updated_at = NOW()
                    WHERE id = %s
                """, (deposit_id,))
    except Exception as e:
        logger.error(f"Failed to mark sweep in progress for {deposit_id}: {e}")
        raise


def record_sweep_result(deposit_id: str, result: SweepResult) -> None:
    """
    Record the outcome of a sweep attempt.

    A "no funds" result after an earlier completed sweep leaves the
    completed status untouched.
    """
    status = 'completed' if result.success else 'failed'
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE deposit_requests
                    SET sweep_status = CASE
                            WHEN sweep_transaction_signature IS NOT NULL AND %s = 'failed'
                            THEN 'completed' ELSE %s END,
                        sweep_transaction_signature = COALESCE(%s, sweep_transaction_signature),
                        sweep_error = %s,
                        sweep_attempts = sweep_attempts + 1,
                        updated_at = NOW()
                    WHERE id = %s
                """, (
                    status, status, result.transaction_signature,
                    result.error_message, deposit_id
                ))
    except Exception as e:
        logger.error(f"Failed to record sweep result for {deposit_id}: {e}")
        raise


def mark_sweep_interrupted(deposit_id: str, error_message: str) -> None:
    """
    Move a sweep left in_progress by a failed attempt back to a retryable state.

    Rows with a recorded sweep signature go to completed, others to failed.
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE deposit_requests
                    SET sweep_status = CASE
                            WHEN sweep_transaction_signature IS NOT NULL THEN 'completed'
                            ELSE 'failed' END,
                        sweep_error = %s,
                        sweep_attempts = sweep_attempts + 1,
                        updated_at = NOW()
                    WHERE id = %s AND sweep_status = 'in_progress'
                """, (error_message, deposit_id))
    except Exception as e:
        logger.error(f"Failed to reset interrupted sweep for {deposit_id}: {e}")
        raise


def get_deposits_needing_sweep(
    max_attempts: int,
    limit: int = 50,
    stale_after: int = config.SWEEP_LOCK_TTL
) -> List[Dict[str, Any]]:
    """
    Verified deposits whose sweep is pending or failed and still has attempts left.

    Sweeps stuck in_progress for longer than stale_after (the process died
    mid-sweep) are returned as well.

    Args:
        max_attempts: Attempts after which a failed sweep is left for manual review
        limit: Maximum number of rows
        stale_after: Seconds after which an in_progress sweep counts as abandoned

    Returns:
        List of deposit rows (without signing material)
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, deposit_address, sweep_status, sweep_attempts, updated_at
                    FROM deposit_requests
                    WHERE payment_verified = TRUE
                    AND (
                        sweep_status IN ('pending', 'failed')
                        OR (sweep_status = 'in_progress'
                            AND updated_at < NOW() - make_interval(secs => %s::INTEGER))
                    )
                    AND sweep_attempts < %s
                    ORDER BY updated_at ASC
                    LIMIT %s
                """, (stale_after, max_attempts, limit))

                deposits = []
                for row in cur.fetchall():
                    deposit = dict(row)
                    _normalize_timestamps(deposit)
                    deposits.append(deposit)
                return deposits
    except Exception as e:
        logger.error(f"Failed to get deposits needing sweep: {e}")
        return []


def get_unverified_deposits() -> List[Dict[str, Any]]:
    """
    Unverified deposit requests that have not expired yet.

    Used to restart watchers after a restart.
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, deposit_address, expected_amount, created_at, expires_at
                    FROM deposit_requests
                    WHERE payment_verified = FALSE
                    AND (expires_at IS NULL OR expires_at > NOW())
                    ORDER BY created_at ASC
                """)

                deposits = []
                for row in cur.fetchall():
                    deposit = dict(row)
                    _normalize_timestamps(deposit)
                    deposits.append(deposit)
                return deposits
    except Exception as e:
        logger.error(f"Failed to get unverified deposits: {e}")
        return []


def to_deposit_model(row: Dict[str, Any]) -> DepositRequest:
    """Build the public deposit model from a row, dropping signing material."""
    fields = {k: v for k, v in row.items() if k in DepositRequest.model_fields}
    fields["id"] = str(fields["id"])
    return DepositRequest(**fields)


def _normalize_timestamps(data: Dict[str, Any]) -> None:
    """
    Normalize PostgreSQL timestamps to Unix timestamps (integers).

    Args:
        data: Dictionary containing timestamp fields to normalize (modified in-place)
    """
    timestamp_fields = ['created_at', 'updated_at', 'expires_at']
    for field in timestamp_fields:
        if field in data and data[field] is not None:
            data[field] = int(data[field].timestamp())
