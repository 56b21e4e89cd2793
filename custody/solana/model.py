"""Module containing models related to deposit addresses, verification and sweeps."""
import enum
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field


class DerivedAddressKeyPair(BaseModel):
    """Child keypair derived for a single deposit request."""
    address: str
    signing_material: bytes = Field(repr=False)
    source_index: int


class EncodedSigningKey(BaseModel):
    """Signing material with an explicit encoding discriminator."""
    encoding: Literal["base64", "json-array"]
    data: str = Field(repr=False)


class VerificationOutcome(str, enum.Enum):
    """How a verification result was reached."""
    INSUFFICIENT = "insufficient"
    MATCHED_TRANSFER = "matched_transfer"
    BALANCE_FALLBACK = "balance_fallback"
    RPC_FAILURE = "rpc_failure"
    ALREADY_RECORDED = "already_recorded"


class PaymentVerification(BaseModel):
    """Result of checking a deposit address for an expected payment."""
    verified: bool
    transaction_signature: Optional[str] = None
    amount_received: int
    timestamp: float
    outcome: VerificationOutcome


class SweepResult(BaseModel):
    """Result of sweeping a deposit address to the master wallet."""
    success: bool
    transaction_signature: Optional[str] = None
    error_message: Optional[str] = None
    amount_transferred: int = 0


class SignatureInfo(BaseModel):
    """Entry returned by getSignaturesForAddress."""
    signature: str
    err: Optional[Any] = None
    block_time: Optional[int] = None


class BlockhashInfo(BaseModel):
    """Latest blockhash with the last block height it is valid for."""
    blockhash: str
    last_valid_block_height: int


SweepStatus = Literal["pending", "in_progress", "completed", "failed", "skipped"]


class DepositRequest(BaseModel):
    """Persisted deposit request (signing material excluded)."""
    id: str
    derivation_index: int
    deposit_address: str
    expected_amount: int
    reference: Optional[str] = None
    payment_verified: bool = False
    transaction_signature: Optional[str] = None
    actual_amount_received: Optional[int] = None
    sweep_status: SweepStatus = "pending"
    sweep_transaction_signature: Optional[str] = None
    sweep_error: Optional[str] = None
    sweep_attempts: int = 0
    created_at: Optional[int] = None
    expires_at: Optional[int] = None


class CreateDepositRequestModel(BaseModel):
    """Request model for creating a deposit request."""
    expected_amount_sol: Optional[float] = Field(default=None, gt=0)
    expected_amount_lamports: Optional[int] = Field(default=None, gt=0)
    reference: Optional[str] = None


class DepositRequestResponse(BaseModel):
    """Response model for a deposit request."""
    id: str
    deposit_address: str
    expected_amount_lamports: int
    expected_amount_sol: float
    payment_verified: bool
    sweep_status: SweepStatus
    expires_at: Optional[int] = None


class VerifyDepositResponse(BaseModel):
    """Response model for deposit verification."""
    verified: bool
    message: str


class SweepDepositResponse(BaseModel):
    """Response model for a sweep attempt."""
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None


class MasterAddressResponse(BaseModel):
    """Response model for the custody address."""
    address: str
