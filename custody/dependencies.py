"""Process-wide service objects, built once from configuration."""
from typing import Optional

from custody import config
from custody.solana.keys import KeyDerivation, MasterKeypair
from custody.solana.ledger_client import SolanaRPCClient
from custody.solana.sweeper import FundSweeper
from custody.solana.verifier import PaymentVerifier

_key_derivation: Optional[KeyDerivation] = None
_ledger_client: Optional[SolanaRPCClient] = None
_payment_verifier: Optional[PaymentVerifier] = None
_fund_sweeper: Optional[FundSweeper] = None


def get_key_derivation() -> KeyDerivation:
    """
    Get the deposit key derivation service.

    Raises:
        ConfigurationError: If MASTER_WALLET_PRIVATE_KEY is missing or invalid
    """
    global _key_derivation
    if _key_derivation is None:
        _key_derivation = KeyDerivation(MasterKeypair.from_secret(config.MASTER_WALLET_PRIVATE_KEY))
    return _key_derivation


def get_ledger_client() -> SolanaRPCClient:
    global _ledger_client
    if _ledger_client is None:
        _ledger_client = SolanaRPCClient()
    return _ledger_client


def get_payment_verifier() -> PaymentVerifier:
    global _payment_verifier
    if _payment_verifier is None:
        _payment_verifier = PaymentVerifier(get_ledger_client())
    return _payment_verifier


def get_fund_sweeper() -> FundSweeper:
    global _fund_sweeper
    if _fund_sweeper is None:
        _fund_sweeper = FundSweeper(get_ledger_client())
    return _fund_sweeper


def get_master_wallet_address() -> str:
    """Sweep destination: MASTER_WALLET_ADDRESS, or the master keypair's own address."""
    return config.MASTER_WALLET_ADDRESS or get_key_derivation().get_master_public_address()


async def close_clients() -> None:
    """Close the shared RPC client. Called on application shutdown."""
    global _ledger_client, _payment_verifier, _fund_sweeper
    if _ledger_client is not None:
        await _ledger_client.close()
    _ledger_client = None
    _payment_verifier = None
    _fund_sweeper = None
