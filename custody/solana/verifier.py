"""Payment verification for single-use deposit addresses."""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from custody import config
from custody.errors import RpcError, RpcRateLimitError
from custody.solana.ledger_client import LedgerClient
from custody.solana.model import PaymentVerification, VerificationOutcome

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM = "system"


def find_transfer_to(
    tx_detail: Dict[str, Any], destination: str, min_lamports: int
) -> Optional[int]:
    """
    Look for a native SOL transfer into destination of at least min_lamports.

    Args:
        tx_detail: jsonParsed transaction from getTransaction
        destination: Deposit address
        min_lamports: Expected amount

    Returns:
        Transferred lamports of the first matching instruction, or None
    """
    # Any level of the payload may be null or missing
    transaction = tx_detail.get("transaction")
    message = transaction.get("message") if isinstance(transaction, dict) else None
    instructions = message.get("instructions") if isinstance(message, dict) else None
    if not isinstance(instructions, list):
        return None
    for instr in instructions:
        if not isinstance(instr, dict) or instr.get("program") != SYSTEM_PROGRAM:
            continue
        parsed = instr.get("parsed")
        if not isinstance(parsed, dict) or parsed.get("type") != "transfer":
            continue
        info = parsed.get("info")
        if not isinstance(info, dict):
            continue
        lamports = info.get("lamports")
        if info.get("destination") == destination and isinstance(lamports, int) and lamports >= min_lamports:
            return lamports
    return None


class PaymentVerifier:
    """
    Decides whether an expected payment has reached a deposit address.

    Results are cached per (address, expected amount) for a short window so
    bursty polling does not multiply RPC load. Rate-limited lookups are retried
    on a fixed delay schedule by verify_payment_with_backoff.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        cache_seconds: float = config.VERIFICATION_CACHE_SECONDS,
        backoff_delays: Sequence[float] = config.BACKOFF_DELAYS,
        signature_limit: int = config.SIGNATURE_SCAN_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.cache_seconds = cache_seconds
        self.backoff_delays = tuple(backoff_delays)
        self.signature_limit = signature_limit
        self._sleep = sleep
        self._clock = clock
        self._cache: Dict[Tuple[str, int], Tuple[float, PaymentVerification]] = {}

    def _cached(self, key: Tuple[str, int]) -> Optional[PaymentVerification]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at < self.cache_seconds:
            return result
        self._cache.pop(key, None)
        return None

    def _remember(self, key: Tuple[str, int], result: PaymentVerification) -> None:
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_seconds]
        for k in expired:
            del self._cache[k]
        self._cache[key] = (now, result)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _check_payment(self, deposit_address: str, expected_amount: int) -> PaymentVerification:
        """
        Query the ledger once. RPC errors propagate.
        """
        balance = await self.ledger.get_balance(deposit_address)
        logger.debug(f"Balance at {deposit_address}: {balance} lamports (expected {expected_amount})")

        if balance < expected_amount:
            return PaymentVerification(
                verified=False,
                transaction_signature=None,
                amount_received=balance,
                timestamp=time.time(),
                outcome=VerificationOutcome.INSUFFICIENT,
            )

        signatures = await self.ledger.get_signatures_for_address(deposit_address, limit=self.signature_limit)
        logger.debug(f"Found {len(signatures)} recent signatures for {deposit_address}")

        for sig in signatures:
            if sig.err is not None:
                continue
            tx_detail = await self.ledger.get_parsed_transaction(sig.signature)
            if not tx_detail:
                continue
            matched = find_transfer_to(tx_detail, deposit_address, expected_amount)
            if matched is not None:
                logger.info(
                    f"Payment verified at {deposit_address}: {matched} lamports in {sig.signature}"
                )
                return PaymentVerification(
                    verified=True,
                    transaction_signature=sig.signature,
                    amount_received=matched,
                    timestamp=tx_detail.get("blockTime") or time.time(),
                    outcome=VerificationOutcome.MATCHED_TRANSFER,
                )

        # Sufficient balance is accepted as proof even without a single matching transfer
        logger.info(
            f"Payment verified at {deposit_address} by balance ({balance} lamports); "
            f"no single matching transfer found"
        )
        return PaymentVerification(
            verified=True,
            transaction_signature=signatures[0].signature if signatures else None,
            amount_received=balance,
            timestamp=time.time(),
            outcome=VerificationOutcome.BALANCE_FALLBACK,
        )

    async def verify_payment(self, deposit_address: str, expected_amount: int) -> PaymentVerification:
        """
        Verify a payment without retrying.

        RPC failures are reported as an unverified result with amount 0.

        Args:
            deposit_address: Deposit address
            expected_amount: Expected amount in lamports

        Returns:
            PaymentVerification
        """
        key = (deposit_address, expected_amount)
        cached = self._cached(key)
        if cached is not None:
            return cached

        try:
            result = await self._check_payment(deposit_address, expected_amount)
        except RpcError as e:
            logger.error(f"Payment verification error for {deposit_address}: {e}")
            return PaymentVerification(
                verified=False,
                transaction_signature=None,
                amount_received=0,
                timestamp=time.time(),
                outcome=VerificationOutcome.RPC_FAILURE,
            )

        self._remember(key, result)
        return result

    async def verify_payment_with_backoff(self, deposit_address: str, expected_amount: int) -> PaymentVerification:
        """
        Verify a payment, retrying rate-limited lookups on the backoff schedule.

        Only RpcRateLimitError is retried; any other error propagates at once.
        Once the schedule is exhausted the last rate-limit error propagates.

        Args:
            deposit_address: Deposit address
            expected_amount: Expected amount in lamports

        Returns:
            PaymentVerification
        """
        key = (deposit_address, expected_amount)
        cached = self._cached(key)
        if cached is not None:
            return cached

        attempt = 0
        while True:
            try:
                result = await self._check_payment(deposit_address, expected_amount)
                break
            except RpcRateLimitError:
                if attempt >= len(self.backoff_delays):
                    logger.error(
                        f"Verification of {deposit_address} still rate limited after "
                        f"{len(self.backoff_delays)} retries"
                    )
                    raise
                delay = self.backoff_delays[attempt]
                attempt += 1
                logger.warning(f"Rate limited. Retrying after {delay}s (attempt {attempt})")
                await self._sleep(delay)

        self._remember(key, result)
        return result
