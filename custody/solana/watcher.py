"""Deposit payment watcher for background monitoring."""
import asyncio
import logging
import time
from typing import Optional

from custody import config, dependencies, deposits
from custody.errors import CustodyError, DepositNotFoundError
from custody.solana.payments import verify_deposit

logger = logging.getLogger(__name__)

# Storage for active watchers
active_watchers: dict[str, asyncio.Task] = {}


async def watch_deposit(
    deposit_id: str,
    expires_at: Optional[int] = None,
    poll_interval: int = config.DEPOSIT_POLL_INTERVAL
):
    """
    Background watcher that polls a deposit until its payment is verified.

    Stops when the payment is verified, the deposit disappears, or the
    deposit expires. Expired deposits stay unverified; the caller decides
    what expiry means for the order.

    Args:
        deposit_id: Deposit request id
        expires_at: Unix timestamp after which polling stops
        poll_interval: Seconds between polls
    """
    if expires_at is None:
        expires_at = int(time.time()) + config.DEPOSIT_EXPIRY_SECONDS

    logger.info(f"Starting watcher for deposit {deposit_id}")

    try:
        while True:
            if time.time() >= expires_at:
                logger.info(f"Watcher for deposit {deposit_id} stopped: deposit expired")
                break

            try:
                verification = await verify_deposit(
                    deposit_id,
                    dependencies.get_payment_verifier(),
                    dependencies.get_fund_sweeper(),
                    dependencies.get_master_wallet_address(),
                )
                if verification.verified:
                    logger.info(f"Watcher for deposit {deposit_id} stopped: payment verified")
                    break
            except DepositNotFoundError:
                logger.warning(f"Watcher for deposit {deposit_id} stopped: deposit not found")
                break
            except CustodyError as e:
                logger.warning(f"Error verifying deposit {deposit_id}: {e}")
            except Exception as e:
                # Database or ledger outages are retried on the next poll
                logger.error(f"Unexpected error verifying deposit {deposit_id}: {e}", exc_info=True)

            await asyncio.sleep(poll_interval)

    except asyncio.CancelledError:
        logger.info(f"Watcher for deposit {deposit_id} was cancelled")


def _forget_watcher(deposit_id: str, task: asyncio.Task) -> None:
    if active_watchers.get(deposit_id) is task:
        del active_watchers[deposit_id]
        logger.info(f"Watcher for deposit {deposit_id} cleaned up")


def start_watcher(deposit_id: str, expires_at: Optional[int] = None) -> bool:
    """
    Start a background watcher for a deposit if it doesn't already exist.

    Returns:
        bool: True if watcher was started, False if it already exists
    """
    if deposit_id in active_watchers:
        logger.warning(f"Watcher for deposit {deposit_id} already exists")
        return False

    watcher_task = asyncio.create_task(watch_deposit(deposit_id, expires_at))
    active_watchers[deposit_id] = watcher_task
    # Also runs for tasks cancelled before their first step
    watcher_task.add_done_callback(lambda task: _forget_watcher(deposit_id, task))
    logger.info(f"Started background watcher for deposit {deposit_id}")
    return True


def recover_watchers() -> int:
    """
    Restart watchers for unverified, unexpired deposits after a restart.

    Returns:
        Number of watchers started
    """
    recovered = 0
    for deposit in deposits.get_unverified_deposits():
        if start_watcher(str(deposit["id"]), deposit.get("expires_at")):
            recovered += 1
    logger.info(f"Recovered {recovered} deposit watchers")
    return recovered


async def stop_all_watchers() -> None:
    """Cancel every running watcher."""
    tasks = list(active_watchers.values())
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
