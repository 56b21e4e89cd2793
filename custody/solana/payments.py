"""Deposit request lifecycle: create, verify, sweep."""
import logging
import time
import uuid
from typing import Any, Dict, Optional

from custody import config, deposits
from custody.errors import DepositNotFoundError
from custody.solana.keys import KeyDerivation, encode_signing_material
from custody.solana.model import (
    EncodedSigningKey,
    PaymentVerification,
    SweepResult,
    VerificationOutcome,
)
from custody.solana.sweeper import FundSweeper
from custody.solana.verifier import PaymentVerifier
from custody.utils import format_address

logger = logging.getLogger(__name__)

SWEEP_IN_PROGRESS_MESSAGE = "Sweep already in progress"
NOT_VERIFIED_MESSAGE = "Payment not verified"


async def create_deposit_request(
    key_derivation: KeyDerivation,
    expected_amount: int,
    reference: Optional[str] = None,
    expires_in: Optional[int] = config.DEPOSIT_EXPIRY_SECONDS
) -> Dict[str, Any]:
    """
    Create a deposit request with a freshly derived deposit address.

    Args:
        key_derivation: Deposit key derivation service
        expected_amount: Expected payment in lamports
        reference: Optional caller reference
        expires_in: Seconds the request stays payable

    Returns:
        Inserted deposit request row

    Raises:
        DerivationError: If the deposit keypair cannot be derived
    """
    if expected_amount <= 0:
        raise ValueError(f"Expected amount must be positive, got {expected_amount}")

    derivation_index = deposits.reserve_derivation_index()
    derived = key_derivation.derive(derivation_index)
    encoded_key = encode_signing_material(derived.signing_material)

    row = deposits.insert_deposit_request(
        deposit_id=str(uuid.uuid4()),
        derivation_index=derivation_index,
        deposit_address=derived.address,
        expected_amount=expected_amount,
        encoded_key=encoded_key,
        reference=reference,
        expires_in=expires_in,
    )
    logger.info(
        f"Created deposit request {row['id']} at {format_address(derived.address)} "
        f"(index {derivation_index}, expecting {expected_amount} lamports)"
    )
    return row


def load_deposit(deposit_id: str) -> Dict[str, Any]:
    """
    Raises:
        DepositNotFoundError: If no deposit request has this id
    """
    row = deposits.get_deposit_request(deposit_id)
    if row is None:
        raise DepositNotFoundError(f"Deposit request {deposit_id} not found")
    return row


async def sweep_deposit(
    deposit: Dict[str, Any],
    sweeper: FundSweeper,
    master_address: str,
    lock_ttl: int = config.SWEEP_LOCK_TTL
) -> SweepResult:
    """
    Sweep a verified deposit into the master wallet under its address lock.

    Safe to retry: an already swept address reports "No funds to sweep" and
    keeps its completed status.

    Args:
        deposit: Deposit request row (with signing material)
        sweeper: Fund sweeper
        master_address: Sweep destination
        lock_ttl: Sweep lock TTL in seconds

    Returns:
        SweepResult
    """
    if not deposit.get("payment_verified"):
        return SweepResult(success=False, error_message=NOT_VERIFIED_MESSAGE)

    deposit_address = deposit["deposit_address"]
    if not deposits.acquire_sweep_lock(deposit_address, ttl=lock_ttl):
        logger.warning(f"Sweep for {format_address(deposit_address)} already running, skipping")
        return SweepResult(success=False, error_message=SWEEP_IN_PROGRESS_MESSAGE)

    try:
        deposits.mark_sweep_in_progress(deposit["id"])
        material = EncodedSigningKey(
            encoding=deposit.get("key_encoding") or "base64",
            data=deposit["derived_private_key"],
        )
        result = await sweeper.sweep(material, master_address)
        deposits.record_sweep_result(deposit["id"], result)
    except Exception as e:
        _reset_interrupted_sweep(deposit["id"], e)
        raise
    finally:
        deposits.release_sweep_lock(deposit_address)

    if result.success:
        logger.info(f"Swept deposit {deposit['id']}: {result.transaction_signature}")
    else:
        logger.warning(f"Sweep of deposit {deposit['id']} failed: {result.error_message}")
    return result


def _reset_interrupted_sweep(deposit_id: str, error: Exception) -> None:
    """Leave the row retryable when a sweep attempt dies before its result is recorded."""
    try:
        deposits.mark_sweep_interrupted(deposit_id, f"Sweep interrupted: {error}")
    except Exception as e:
        # The retry worker still picks the row up once it goes stale
        logger.error(f"Could not reset sweep status for deposit {deposit_id}: {e}")


async def verify_deposit(
    deposit_id: str,
    verifier: PaymentVerifier,
    sweeper: FundSweeper,
    master_address: str
) -> PaymentVerification:
    """
    Verify a deposit's payment, record it, then sweep the funds.

    The verified outcome is recorded before sweeping and never depends on the
    sweep succeeding.

    Raises:
        DepositNotFoundError: If the deposit does not exist
        RpcError: If the ledger is unavailable or still rate limited after retries
    """
    deposit = load_deposit(deposit_id)

    if deposit["payment_verified"]:
        return PaymentVerification(
            verified=True,
            transaction_signature=deposit.get("transaction_signature"),
            amount_received=deposit.get("actual_amount_received") or 0,
            timestamp=deposit.get("updated_at") or time.time(),
            outcome=VerificationOutcome.ALREADY_RECORDED,
        )

    verification = await verifier.verify_payment_with_backoff(
        deposit["deposit_address"], deposit["expected_amount"]
    )
    logger.info(
        f"Verification result for {deposit_id}: verified={verification.verified} "
        f"received={verification.amount_received} ({verification.outcome.value})"
    )
    if not verification.verified:
        return verification

    deposits.mark_payment_verified(
        deposit_id, verification.transaction_signature, verification.amount_received
    )
    deposit["payment_verified"] = True

    try:
        await sweep_deposit(deposit, sweeper, master_address)
    except Exception as e:
        logger.error(f"Sweep bookkeeping failed for deposit {deposit_id}: {e}", exc_info=True)

    return verification


async def sweep_funds_to_master(
    sweeper: FundSweeper,
    encoded_private_key: str,
    master_wallet_address: str
) -> Dict[str, Any]:
    """
    Sweep a derived address given its stored private key string.

    Returns:
        {"success": bool, "signature": str} or {"success": False, "error": str}
    """
    result = await sweeper.sweep(encoded_private_key, master_wallet_address)
    if result.success:
        return {"success": True, "signature": result.transaction_signature}
    return {"success": False, "error": result.error_message}
