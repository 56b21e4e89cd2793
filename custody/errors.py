"""Custody error taxonomy and FastAPI exception handlers."""
from fastapi import Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class CustodyError(Exception):
    """Base class for all custody service errors."""


class ConfigurationError(CustodyError):
    """Master secret missing, malformed or of the wrong length."""


class DerivationError(CustodyError):
    """Seed-to-keypair construction failed for a derivation index."""


class KeyFormatError(CustodyError):
    """Signing material is not a recognizable encoding or length."""


class RpcError(CustodyError):
    """Non rate-limit failure talking to the Solana RPC endpoint."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class RpcRateLimitError(RpcError):
    """RPC endpoint answered with HTTP 429 or an equivalent JSON-RPC error."""


class BlockhashExpiredError(RpcError):
    """Transaction was not confirmed before its blockhash expired."""


class SweepExecutionError(CustodyError):
    """Sweep transaction failed on-chain."""

    def __init__(self, message: str, ledger_error=None):
        super().__init__(message)
        self.ledger_error = ledger_error


class DepositNotFoundError(CustodyError):
    """No deposit request with the given id."""


ERROR_STATUS_MAP = {
    "ConfigurationError": 500,
    "DerivationError": 500,
    "KeyFormatError": 422,
    "RpcError": 502,
    "RpcRateLimitError": 503,
    "BlockhashExpiredError": 504,
    "SweepExecutionError": 502,
    "DepositNotFoundError": 404,
}


async def custody_exception_handler(request: Request, exc: CustodyError):
    error_type = exc.__class__.__name__
    error_message = str(exc)
    status_code = ERROR_STATUS_MAP.get(error_type, 400)

    logger.warning(f"[CUSTODY ERROR] {error_type}: {error_message} @ {request.url}")

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_type,
            "message": error_message,
            "status": status_code,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"[Unhandled Exception] {type(exc).__name__}: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "[Custody] An unexpected error occurred. Please try again later.",
        },
    )
