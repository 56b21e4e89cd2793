"""Deposit request API routes."""
import logging
from fastapi import APIRouter, Depends, HTTPException

from custody import deposits
from custody.dependencies import (
    get_fund_sweeper,
    get_key_derivation,
    get_master_wallet_address,
    get_payment_verifier,
)
from custody.errors import RpcError
from custody.solana.keys import KeyDerivation
from custody.solana.model import (
    CreateDepositRequestModel,
    DepositRequest,
    DepositRequestResponse,
    MasterAddressResponse,
    SweepDepositResponse,
    VerifyDepositResponse,
)
from custody.solana.payments import (
    create_deposit_request,
    load_deposit,
    sweep_deposit,
    verify_deposit,
)
from custody.solana.sweeper import FundSweeper
from custody.solana.units import lamports_to_sol, sol_to_lamports
from custody.solana.verifier import PaymentVerifier
from custody.solana.watcher import start_watcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deposits", tags=["Deposits"])


@router.post("", response_model=DepositRequestResponse, status_code=201)
async def create_deposit(
    req: CreateDepositRequestModel,
    key_derivation: KeyDerivation = Depends(get_key_derivation),
) -> DepositRequestResponse:
    """
    Creates a deposit request with a single-use SOL deposit address.

    Exactly one of expected_amount_sol or expected_amount_lamports must be set.
    A background watcher polls the address until the payment is verified or
    the request expires, then sweeps the funds to the custody wallet.
    """
    if (req.expected_amount_sol is None) == (req.expected_amount_lamports is None):
        raise HTTPException(
            status_code=422,
            detail="Provide exactly one of expected_amount_sol or expected_amount_lamports"
        )

    expected_lamports = (
        req.expected_amount_lamports if req.expected_amount_lamports is not None
        else sol_to_lamports(req.expected_amount_sol)
    )
    if expected_lamports <= 0:
        raise HTTPException(status_code=422, detail="Expected amount is below one lamport")

    row = await create_deposit_request(key_derivation, expected_lamports, reference=req.reference)
    start_watcher(str(row["id"]), row.get("expires_at"))

    return DepositRequestResponse(
        id=str(row["id"]),
        deposit_address=row["deposit_address"],
        expected_amount_lamports=row["expected_amount"],
        expected_amount_sol=lamports_to_sol(row["expected_amount"]),
        payment_verified=row["payment_verified"],
        sweep_status=row["sweep_status"],
        expires_at=row.get("expires_at"),
    )


@router.get("/master-address", response_model=MasterAddressResponse)
async def get_master_address(
    master_address: str = Depends(get_master_wallet_address),
) -> MasterAddressResponse:
    """Returns the custody address deposits are swept to."""
    return MasterAddressResponse(address=master_address)


@router.get("/{deposit_id}", response_model=DepositRequest)
async def get_deposit(deposit_id: str) -> DepositRequest:
    """Returns a deposit request's payment and sweep status."""
    return deposits.to_deposit_model(load_deposit(deposit_id))


@router.post("/{deposit_id}/verify", response_model=VerifyDepositResponse)
async def verify_deposit_payment(
    deposit_id: str,
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    sweeper: FundSweeper = Depends(get_fund_sweeper),
    master_address: str = Depends(get_master_wallet_address),
) -> VerifyDepositResponse:
    """
    Checks whether the deposit's payment has arrived.

    Ledger failures are reported the same way as a payment that has not
    arrived yet.
    """
    try:
        verification = await verify_deposit(deposit_id, verifier, sweeper, master_address)
    except RpcError as e:
        logger.warning(f"Verification of deposit {deposit_id} failed: {e}")
        return VerifyDepositResponse(verified=False, message="Payment not yet received")

    return VerifyDepositResponse(
        verified=verification.verified,
        message="Payment verified" if verification.verified else "Payment not yet received",
    )


@router.post("/{deposit_id}/sweep", response_model=SweepDepositResponse)
async def sweep_deposit_funds(
    deposit_id: str,
    sweeper: FundSweeper = Depends(get_fund_sweeper),
    master_address: str = Depends(get_master_wallet_address),
) -> SweepDepositResponse:
    """
    Sweeps a verified deposit's funds to the custody wallet.

    Safe to call repeatedly; concurrent calls for the same deposit are
    rejected while a sweep is running.
    """
    result = await sweep_deposit(load_deposit(deposit_id), sweeper, master_address)
    return SweepDepositResponse(
        success=result.success,
        signature=result.transaction_signature,
        error=result.error_message,
    )
