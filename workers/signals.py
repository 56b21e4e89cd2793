"""
SIGINT/SIGTERM handling for the sweep worker.

A signal only sets a flag: a sweep request already sent to the API is left
to finish so its result gets recorded.
"""
import signal
import logging
from typing import Optional

logger = logging.getLogger(__name__)

_received_signal: Optional[int] = None


def get_shutdown_flag() -> bool:
    return _received_signal is not None


def request_shutdown(sig: int = signal.SIGTERM, frame=None) -> None:
    global _received_signal
    if _received_signal is None:
        logger.info(f"Received {signal.Signals(sig).name}, stopping after the current sweep")
    _received_signal = sig


def register_signal_handlers() -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, request_shutdown)
