"""
Sweep worker settings, read from the environment (.env supported).
"""
import os
from dotenv import load_dotenv

load_dotenv(override=True)

API_URL = os.getenv("API_URL", "http://localhost:8000")
HTTP_TIMEOUT = int(os.getenv("HTTP_TIMEOUT", "120"))  # A sweep call waits for on-chain confirmation

POLL_INTERVAL = int(os.getenv("SWEEP_POLL_INTERVAL", "30"))
SWEEP_BATCH_SIZE = int(os.getenv("SWEEP_BATCH_SIZE", "20"))

# After MAX_SWEEP_ATTEMPTS failures a deposit is left for manual review
MAX_SWEEP_ATTEMPTS = int(os.getenv("MAX_SWEEP_ATTEMPTS", "5"))
RETRY_DELAY_BASE = int(os.getenv("SWEEP_RETRY_DELAY_BASE", "60"))  # Seconds, doubled per failed attempt

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
