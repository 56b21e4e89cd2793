"""
Utility functions for the sweep worker.
"""
import time
from typing import Any, Dict, Optional
from workers.config import RETRY_DELAY_BASE


def retry_delay(attempts: int, base_delay: int = RETRY_DELAY_BASE) -> int:
    """
    Exponential delay before the next sweep attempt.

    Args:
        attempts: Sweep attempts made so far
        base_delay: Delay after the first failed attempt, in seconds

    Returns:
        Seconds to wait after the last attempt
    """
    if attempts <= 0:
        return 0
    return base_delay * (2 ** (attempts - 1))


def is_due_for_sweep(deposit: Dict[str, Any], now: Optional[float] = None,
                     base_delay: int = RETRY_DELAY_BASE) -> bool:
    """
    Whether a deposit's sweep should be attempted now.

    Pending sweeps are always due; failed ones wait out their backoff
    measured from the last update.
    """
    if deposit.get('sweep_status') == 'pending':
        return True
    now = time.time() if now is None else now
    last_attempt = deposit.get('updated_at') or 0
    return now - last_attempt >= retry_delay(deposit.get('sweep_attempts', 0), base_delay)
