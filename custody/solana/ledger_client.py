"""Solana JSON-RPC client used for balance, history and transaction submission."""
import asyncio
import base64
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from custody import config
from custody.errors import BlockhashExpiredError, RpcError, RpcRateLimitError
from custody.solana.model import BlockhashInfo, SignatureInfo

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = {429, -32429}


class LedgerClient(Protocol):
    """Ledger operations the verifier and sweeper depend on."""

    async def get_balance(self, address: str) -> int:
        ...

    async def get_signatures_for_address(self, address: str, limit: int = 50) -> List[SignatureInfo]:
        ...

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_latest_blockhash(self) -> BlockhashInfo:
        ...

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        ...

    async def confirm_transaction(
        self, signature: str, blockhash: str, last_valid_block_height: int
    ) -> Optional[Any]:
        ...


class SolanaRPCClient:
    """Client for a Solana JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        commitment: Optional[str] = None,
        timeout: Optional[float] = None,
        confirmation_poll_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Solana RPC client.

        Args:
            rpc_url: RPC endpoint URL. If not provided, reads SOLANA_RPC_URL.
            commitment: Commitment level for reads ("confirmed", "finalized")
            timeout: Per-request timeout in seconds
            confirmation_poll_interval: Seconds between signature status polls
            transport: Optional httpx transport (used by tests)
        """
        self.rpc_url = rpc_url or config.SOLANA_RPC_URL
        if not self.rpc_url:
            raise ValueError("SOLANA_RPC_URL environment variable must be set or rpc_url must be provided")

        self.commitment = commitment or config.SOLANA_COMMITMENT
        self.timeout = timeout if timeout is not None else config.RPC_TIMEOUT
        self.confirmation_poll_interval = (
            confirmation_poll_interval if confirmation_poll_interval is not None
            else config.CONFIRMATION_POLL_INTERVAL
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC call and return its "result".

        Raises:
            RpcRateLimitError: On HTTP 429 or a rate-limit JSON-RPC error
            RpcError: On any other transport, HTTP or JSON-RPC failure
        """
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        logger.debug(f"RPC {method} params={params}")

        try:
            response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcError(f"Failed to communicate with Solana RPC ({method}): {e}") from e

        if response.status_code == 429:
            raise RpcRateLimitError(f"{method} rate limited: 429 Too Many Requests", code=429)
        if not response.is_success:
            logger.error(f"RPC {method} error response body: {response.text}")
            raise RpcError(
                f"{method} failed with HTTP {response.status_code}",
                code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"Invalid response from Solana RPC ({method}): not valid JSON") from e

        if not isinstance(data, dict):
            raise RpcError(f"Invalid response from Solana RPC ({method}): expected a JSON object")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if code in RATE_LIMIT_CODES:
                raise RpcRateLimitError(f"{method} rate limited: {message}", code=code)
            raise RpcError(f"{method} failed: {message}", code=code)

        return data.get("result")

    def _shape_error(self, method: str, result: Any, error: Exception) -> RpcError:
        logger.error(f"RPC {method} returned an unexpected result: {result!r}")
        return RpcError(f"Unexpected {method} result: {type(error).__name__}: {error}")

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_balance(self, address: str) -> int:
        """Balance of an address in lamports."""
        result = await self._rpc("getBalance", [address, {"commitment": self.commitment}])
        try:
            return int(result["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise self._shape_error("getBalance", result, e) from e

    async def get_signatures_for_address(self, address: str, limit: int = 50) -> List[SignatureInfo]:
        """
        Recent transaction signatures touching an address, most recent first.

        Args:
            address: Base58 address
            limit: Maximum number of signatures to return
        """
        result = await self._rpc(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        try:
            return [
                SignatureInfo(
                    signature=entry["signature"],
                    err=entry.get("err"),
                    block_time=entry.get("blockTime"),
                )
                for entry in result or []
            ]
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise self._shape_error("getSignaturesForAddress", result, e) from e

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Transaction with decoded instructions, or None if not found or not yet final.
        """
        result = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is not None and not isinstance(result, dict):
            raise self._shape_error("getTransaction", result, TypeError("expected an object"))
        return result

    async def get_latest_blockhash(self) -> BlockhashInfo:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            value = result["value"]
            return BlockhashInfo(
                blockhash=value["blockhash"],
                last_valid_block_height=value["lastValidBlockHeight"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise self._shape_error("getLatestBlockhash", result, e) from e

    async def get_block_height(self) -> int:
        result = await self._rpc("getBlockHeight", [{"commitment": self.commitment}])
        try:
            return int(result)
        except (TypeError, ValueError) as e:
            raise self._shape_error("getBlockHeight", result, e) from e

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Submit a signed, serialized transaction. Returns its signature."""
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        return await self._rpc(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )

    async def confirm_transaction(
        self, signature: str, blockhash: str, last_valid_block_height: int
    ) -> Optional[Any]:
        """
        Wait until a transaction reaches the client's commitment level.

        Polls signature status until the transaction is confirmed or the block
        height passes last_valid_block_height.

        Returns:
            The ledger's transaction error, or None on success

        Raises:
            BlockhashExpiredError: If the blockhash expired before confirmation
        """
        accepted = {"confirmed", "finalized"} if self.commitment != "finalized" else {"finalized"}

        while True:
            result = await self._rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            try:
                status = (result or {}).get("value", [None])[0]
            except (AttributeError, IndexError, TypeError) as e:
                raise self._shape_error("getSignatureStatuses", result, e) from e
            if isinstance(status, dict):
                if status.get("err") is not None:
                    return status["err"]
                if status.get("confirmationStatus") in accepted:
                    return None

            block_height = await self.get_block_height()
            if block_height > last_valid_block_height:
                raise BlockhashExpiredError(
                    f"Signature {signature} has expired: block height exceeded "
                    f"(blockhash {blockhash}, last valid height {last_valid_block_height})"
                )

            await asyncio.sleep(self.confirmation_poll_interval)
