"""
Custody API client for the sweep worker.

The worker never touches signing material itself; it asks the API to sweep
and reads back deposit status.
"""
import logging
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from typing import Dict, Any, Optional
from workers.config import API_URL, HTTP_TIMEOUT

logger = logging.getLogger(__name__)

_api_client: Optional['APIClient'] = None

# Sweeps are serialized per address by the API, so replaying a throttled
# sweep request cannot move funds twice.
RETRY_STATUSES = [429, 503]


class APIClient:
    """Thin requests.Session wrapper around the deposit endpoints."""

    def __init__(self, base_url: str, timeout: int = HTTP_TIMEOUT, max_retries: int = 3):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

        adapter = HTTPAdapter(
            max_retries=Retry(
                total=max_retries,
                backoff_factor=1,
                status_forcelist=RETRY_STATUSES,
                allowed_methods=["POST", "GET"]
            ),
            pool_connections=4,
            pool_maxsize=4
        )
        for scheme in ("http://", "https://"):
            self.session.mount(scheme, adapter)

    def _request(self, method: str, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            logger.error(f"{method} {path} returned {e.response.status_code}: {e.response.text}")
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise

    def sweep_deposit(self, deposit_id: str) -> Dict[str, Any]:
        """
        Ask the API to sweep a verified deposit into the custody wallet.

        Returns:
            {"success": bool, "signature": str or None, "error": str or None}

        Raises:
            requests.exceptions.RequestException: If the API is unreachable or errors
        """
        return self._request("POST", f"/deposits/{deposit_id}/sweep")

    def get_deposit(self, deposit_id: str) -> Dict[str, Any]:
        """Current status of a deposit request."""
        return self._request("GET", f"/deposits/{deposit_id}")

    def health_check(self) -> bool:
        try:
            return self.session.get(f"{self.base_url}/health", timeout=5).ok
        except requests.exceptions.RequestException:
            return False

    def close(self) -> None:
        self.session.close()


def get_api_client() -> APIClient:
    """Process-wide API client built from API_URL."""
    global _api_client
    if _api_client is None:
        _api_client = APIClient(API_URL, HTTP_TIMEOUT)
    return _api_client
