"""Deposit address derivation from the master custody keypair."""
import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from solders.keypair import Keypair  # type: ignore

from custody.errors import ConfigurationError, DerivationError, KeyFormatError
from custody.solana.model import DerivedAddressKeyPair, EncodedSigningKey

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64  # 32-byte ed25519 seed + 32-byte public key
SEED_LENGTH = 32
DERIVATION_PREFIX = "deposit_"


def _decode_key_text(text: str, encoding: Optional[str] = None) -> bytes:
    """
    Decode key text as a JSON byte array or base64.

    When no encoding is given, a leading '[' selects the JSON array form and
    anything else is treated as base64.
    """
    text = text.strip()
    if encoding is None:
        encoding = "json-array" if text.startswith("[") else "base64"

    if encoding == "json-array":
        values = json.loads(text)
        if not isinstance(values, list):
            raise ValueError("JSON key material must be an array of byte values")
        return bytes(values)
    if encoding == "base64":
        return base64.b64decode(text, validate=True)
    raise ValueError(f"Unknown key encoding: {encoding}")


def encode_signing_material(secret_key: bytes, encoding: str = "base64") -> EncodedSigningKey:
    """
    Encode a 64-byte secret key for storage.

    Args:
        secret_key: Full keypair secret (seed + public key)
        encoding: "base64" or "json-array"

    Returns:
        EncodedSigningKey carrying its encoding tag
    """
    if len(secret_key) != SECRET_KEY_LENGTH:
        raise KeyFormatError(f"Expected {SECRET_KEY_LENGTH}-byte secret key, got {len(secret_key)} bytes")
    if encoding == "base64":
        data = base64.b64encode(secret_key).decode("ascii")
    elif encoding == "json-array":
        data = json.dumps(list(secret_key))
    else:
        raise KeyFormatError(f"Unknown key encoding: {encoding}")
    return EncodedSigningKey(encoding=encoding, data=data)


def decode_signing_material(material: Union[EncodedSigningKey, str, bytes]) -> bytes:
    """
    Decode persisted signing material back to the 64-byte secret key.

    Tagged material is decoded by its tag. Untagged strings are probed for a
    JSON array prefix before falling back to base64.

    Raises:
        KeyFormatError: If the material cannot be decoded or has the wrong length
    """
    try:
        if isinstance(material, EncodedSigningKey):
            secret_key = _decode_key_text(material.data, material.encoding)
        elif isinstance(material, (bytes, bytearray)):
            secret_key = bytes(material)
        else:
            secret_key = _decode_key_text(material)
    except (ValueError, TypeError, binascii.Error) as e:
        raise KeyFormatError(f"Failed to decode private key: {e}") from e

    if len(secret_key) != SECRET_KEY_LENGTH:
        raise KeyFormatError(
            f"Expected {SECRET_KEY_LENGTH}-byte secret key, got {len(secret_key)} bytes"
        )
    return secret_key


def keypair_from_signing_material(material: Union[EncodedSigningKey, str, bytes]) -> Keypair:
    """Rebuild a keypair from persisted signing material."""
    secret_key = decode_signing_material(material)
    try:
        return Keypair.from_bytes(secret_key)
    except ValueError as e:
        raise KeyFormatError(f"Invalid secret key: {e}") from e


@dataclass(frozen=True)
class MasterKeypair:
    """Master custody keypair, loaded once from the configured secret."""
    keypair: Keypair

    @classmethod
    def from_secret(cls, secret: Optional[str]) -> "MasterKeypair":
        """
        Load the master keypair from its configured secret.

        Args:
            secret: JSON byte array text or base64 of the 64-byte secret key

        Raises:
            ConfigurationError: If the secret is missing, malformed or of the wrong length
        """
        if not secret:
            raise ConfigurationError("MASTER_WALLET_PRIVATE_KEY environment variable not set")
        try:
            secret_key = _decode_key_text(secret)
        except (ValueError, TypeError, binascii.Error) as e:
            raise ConfigurationError(f"Invalid MASTER_WALLET_PRIVATE_KEY: {e}") from e
        if len(secret_key) != SECRET_KEY_LENGTH:
            raise ConfigurationError(
                f"Invalid MASTER_WALLET_PRIVATE_KEY: Invalid key length: {len(secret_key)} bytes"
            )
        try:
            return cls(keypair=Keypair.from_bytes(secret_key))
        except ValueError as e:
            raise ConfigurationError(f"Invalid MASTER_WALLET_PRIVATE_KEY: {e}") from e

    @property
    def seed(self) -> bytes:
        return bytes(self.keypair)[:SEED_LENGTH]

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


class KeyDerivation:
    """
    Derives one-time deposit keypairs from the master keypair.

    Each child seed is HMAC-SHA256(master seed, "deposit_<index>"), so the same
    index always yields the same address and no derived key reveals the master
    key or any sibling.
    """

    def __init__(self, master: MasterKeypair):
        self._master = master

    def get_master_public_address(self) -> str:
        """Returns the master wallet address used as the sweep destination."""
        return self._master.address

    def derive_seed(self, index: int) -> bytes:
        """
        Compute the 32-byte child seed for a derivation index.

        Args:
            index: Non-negative derivation index

        Returns:
            Derived seed bytes
        """
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise ValueError(f"Derivation index must be a non-negative integer, got {index!r}")
        message = f"{DERIVATION_PREFIX}{index}".encode("ascii")
        return hmac.new(self._master.seed, message, hashlib.sha256).digest()

    def derive(self, index: int) -> DerivedAddressKeyPair:
        """
        Derive the deposit keypair for an index.

        Raises:
            ValueError: If index is negative
            DerivationError: If the keypair cannot be built from the derived seed
        """
        derived_seed = self.derive_seed(index)
        try:
            keypair = Keypair.from_seed(derived_seed)
        except ValueError as e:
            raise DerivationError(f"Failed to derive address at index {index}") from e

        return DerivedAddressKeyPair(
            address=str(keypair.pubkey()),
            signing_material=bytes(keypair),
            source_index=index,
        )

    def derive_deposit_address_with_key(self, index: int) -> Dict[str, str]:
        """
        Derive a deposit address together with its base64 private key.

        Returns:
            {"address": base58 address, "private_key": base64 of the 64-byte secret}
        """
        derived = self.derive(index)
        return {
            "address": derived.address,
            "private_key": base64.b64encode(derived.signing_material).decode("ascii"),
        }

    def derive_deposit_address(self, index: int) -> str:
        return self.derive(index).address

    def derive_multiple_addresses(self, count: int) -> List[str]:
        """Derive the addresses for indices 0..count-1."""
        return [self.derive_deposit_address(i) for i in range(count)]
