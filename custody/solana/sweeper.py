"""Sweeping of deposit address balances into the master custody wallet."""
import json
import logging
from typing import Union

from solders.hash import Hash  # type: ignore
from solders.message import Message  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.system_program import TransferParams, transfer  # type: ignore
from solders.transaction import Transaction  # type: ignore

from custody import config
from custody.errors import SweepExecutionError
from custody.solana.keys import keypair_from_signing_material
from custody.solana.ledger_client import LedgerClient
from custody.solana.model import EncodedSigningKey, SweepResult

logger = logging.getLogger(__name__)

NO_FUNDS_MESSAGE = "No funds to sweep"
INSUFFICIENT_AFTER_FEES_MESSAGE = "Insufficient balance after fees"


class FundSweeper:
    """
    Moves a deposit address's balance, minus a fee buffer, to the master wallet.

    Sweeping is never fatal: every failure is reported through SweepResult.
    Calls for the same address must be serialized by the caller.
    """

    def __init__(self, ledger: LedgerClient, fee_buffer: int = config.SWEEP_FEE_BUFFER_LAMPORTS):
        self.ledger = ledger
        self.fee_buffer = fee_buffer

    async def _execute(
        self, signing_material: Union[EncodedSigningKey, str, bytes], master_address: str
    ) -> SweepResult:
        derived_keypair = keypair_from_signing_material(signing_material)
        derived_pubkey = derived_keypair.pubkey()
        master_pubkey = Pubkey.from_string(master_address)

        logger.info(f"Starting sweep from {derived_pubkey} to {master_address}")

        balance = await self.ledger.get_balance(str(derived_pubkey))
        logger.debug(f"Derived address balance: {balance} lamports")
        if balance == 0:
            return SweepResult(success=False, error_message=NO_FUNDS_MESSAGE)

        amount_to_transfer = max(0, balance - self.fee_buffer)
        if amount_to_transfer <= 0:
            return SweepResult(success=False, error_message=INSUFFICIENT_AFTER_FEES_MESSAGE)

        latest = await self.ledger.get_latest_blockhash()
        recent_blockhash = Hash.from_string(latest.blockhash)

        instruction = transfer(TransferParams(
            from_pubkey=derived_pubkey,
            to_pubkey=master_pubkey,
            lamports=amount_to_transfer,
        ))
        message = Message.new_with_blockhash([instruction], derived_pubkey, recent_blockhash)
        transaction = Transaction([derived_keypair], message, recent_blockhash)

        signature = await self.ledger.send_raw_transaction(bytes(transaction))
        logger.info(f"Sweep transaction sent: {signature}")

        ledger_error = await self.ledger.confirm_transaction(
            signature, latest.blockhash, latest.last_valid_block_height
        )
        if ledger_error is not None:
            raise SweepExecutionError(
                "Transaction failed: " + json.dumps(ledger_error, default=str),
                ledger_error=ledger_error,
            )

        logger.info(f"Sweep completed successfully. Transferred: {amount_to_transfer} lamports")
        return SweepResult(
            success=True,
            transaction_signature=signature,
            amount_transferred=amount_to_transfer,
        )

    async def sweep(
        self, signing_material: Union[EncodedSigningKey, str, bytes], master_address: str
    ) -> SweepResult:
        """
        Sweep all spendable funds from a derived address to master_address.

        Args:
            signing_material: Encoded 64-byte secret key of the derived address
            master_address: Base58 custody address

        Returns:
            SweepResult; failures are returned, never raised
        """
        try:
            return await self._execute(signing_material, master_address)
        except Exception as e:
            logger.error(f"Sweep error: {type(e).__name__}: {e}")
            return SweepResult(success=False, error_message=str(e) or type(e).__name__)
