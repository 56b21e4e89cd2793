"""
Sweep Retry Worker (run with `python -m workers.sweep_worker`)

Finds verified deposits whose sweep is still pending or has failed, and asks
the custody API to sweep them. The API serializes sweeps per address, so
several workers can run side by side.
"""
import time
import logging
from dotenv import load_dotenv

load_dotenv(override=True)

from workers.config import API_URL, POLL_INTERVAL, LOG_LEVEL, MAX_SWEEP_ATTEMPTS, SWEEP_BATCH_SIZE
from workers.signals import register_signal_handlers, get_shutdown_flag
from workers.api.client import APIClient, get_api_client
from workers.utils import is_due_for_sweep
from custody.database import close_connection_pool
from custody.deposits import get_deposits_needing_sweep
from custody.utils import format_address

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def process_pending_sweeps(api_client: APIClient) -> int:
    """
    Run one pass over deposits needing a sweep.

    Returns:
        Number of sweeps that succeeded
    """
    swept = 0
    now = time.time()
    for deposit in get_deposits_needing_sweep(MAX_SWEEP_ATTEMPTS, SWEEP_BATCH_SIZE):
        if get_shutdown_flag():
            break
        if not is_due_for_sweep(deposit, now):
            continue

        deposit_id = str(deposit['id'])
        address = format_address(deposit['deposit_address'])
        try:
            result = api_client.sweep_deposit(deposit_id)
        except Exception as e:
            logger.error(f"[SweepWorker] Sweep request for {address} failed: {e}")
            continue

        if result.get('success'):
            swept += 1
            logger.info(f"[SweepWorker] Swept {address}: {result.get('signature')}")
        else:
            logger.warning(
                f"[SweepWorker] Sweep of {address} not completed "
                f"(attempt {deposit.get('sweep_attempts', 0) + 1}/{MAX_SWEEP_ATTEMPTS}): {result.get('error')}"
            )
    return swept


def _idle(seconds: int) -> None:
    """Sleep between passes, waking early on shutdown."""
    deadline = time.monotonic() + seconds
    while not get_shutdown_flag() and time.monotonic() < deadline:
        time.sleep(min(1.0, deadline - time.monotonic()))


def main() -> None:
    register_signal_handlers()
    api_client = get_api_client()
    logger.info(
        f"[SweepWorker] Started: API {API_URL}, pass every {POLL_INTERVAL}s, "
        f"at most {MAX_SWEEP_ATTEMPTS} attempts per deposit"
    )
    if not api_client.health_check():
        logger.warning(f"[SweepWorker] Custody API at {API_URL} is not answering yet")

    try:
        while not get_shutdown_flag():
            try:
                swept = process_pending_sweeps(api_client)
            except Exception as e:
                logger.error(f"[SweepWorker] Sweep pass failed: {e}", exc_info=True)
            else:
                if swept:
                    logger.info(f"[SweepWorker] Completed {swept} sweep(s) this pass")
            _idle(POLL_INTERVAL)
    except KeyboardInterrupt:
        logger.info("[SweepWorker] Interrupted")
    finally:
        api_client.close()
        close_connection_pool()
        logger.info("[SweepWorker] Stopped")


if __name__ == "__main__":
    main()
