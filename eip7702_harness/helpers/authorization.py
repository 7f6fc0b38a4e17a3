"""
EIP-7702 Authorization Builder
==============================

Builds and verifies the signed authorization tuples that let an EOA delegate
its code to an implementation contract.

The signing preimage is fixed by EIP-7702:

    keccak256(0x05 || rlp([chain_id, address, nonce]))

Nonce policy (the chain bumps the sender's nonce *before* it walks the
authorization list):

    - authority sends the type-4 transaction itself -> current nonce + 1
    - a sponsor sends it                            -> current nonce
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import rlp
from eth_account import Account
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_typing import ChecksumAddress
from eth_utils import is_address, keccak, to_canonical_address, to_checksum_address

from eip7702_harness.exceptions import (
    InvalidSignatureError,
    MalformedInputError,
    SigningError,
)

logger = logging.getLogger(__name__)

SET_CODE_TX_MAGIC = b"\x05"
ZERO_ADDRESS: ChecksumAddress = to_checksum_address("0x" + "00" * 20)

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
UINT256_MAX = 2**256 - 1
UINT64_MAX = 2**64 - 1
UINT8_MAX = 2**8 - 1


# --------------------------------------------------------------------------- #
# Input normalisation                                                         #
# --------------------------------------------------------------------------- #

def normalize_address(value: str | bytes) -> ChecksumAddress:
    """Return *value* as a checksummed address or raise MalformedInputError."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise MalformedInputError(f"Address must be 20 bytes, got {len(value)}")
        return to_checksum_address(bytes(value))
    if not isinstance(value, str) or not is_address(value):
        raise MalformedInputError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def _check_uint(name: str, value: Any, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedInputError(f"{name} must be an integer, got {value!r}")
    if value < 0 or value > maximum:
        raise MalformedInputError(f"{name} out of range: {value}")
    return value


def _parse_quantity(name: str, value: Any) -> int:
    """Parse a JSON-RPC quantity given as int, hex string or decimal string."""
    if isinstance(value, bool):
        raise MalformedInputError(f"{name} must be a number, got {value!r}")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value, 16) if value.lower().startswith("0x") else int(value, 10)
        except ValueError:
            raise MalformedInputError(f"{name} is not a valid quantity: {value!r}") from None
    else:
        raise MalformedInputError(f"{name} must be a number, got {type(value).__name__}")
    if parsed < 0:
        raise MalformedInputError(f"{name} must be non-negative, got {parsed}")
    return parsed


def to_canonical_hex(value: int) -> str:
    """Hex-encode *value* without leading zero nibbles (``0x0`` for zero)."""
    return hex(value)


def to_word_hex(value: int) -> str:
    """Hex-encode *value* as a zero-padded 32-byte word."""
    return "0x" + format(value, "064x")


# --------------------------------------------------------------------------- #
# Digest                                                                      #
# --------------------------------------------------------------------------- #

def authorization_digest(chain_id: int, address: str | bytes, nonce: int) -> bytes:
    """
    Compute the EIP-7702 signing hash for ``(chain_id, address, nonce)``.

    Args:
        chain_id: Chain the authorization is valid on (0 for any chain)
        address: Implementation address (or the zero address to clear)
        nonce: Authority nonce the tuple is bound to

    Returns:
        32-byte keccak digest of ``0x05 || rlp([chain_id, address, nonce])``
    """
    _check_uint("chain_id", chain_id, UINT256_MAX)
    _check_uint("nonce", nonce, UINT64_MAX)
    address_bytes = to_canonical_address(normalize_address(address))
    return keccak(SET_CODE_TX_MAGIC + rlp.encode([chain_id, address_bytes, nonce]))


def authorization_nonce(current_nonce: int, sponsored: bool = False) -> int:
    """
    Pick the authorization nonce for an authority whose nonce is *current_nonce*.

    When the authority also sends the enclosing transaction, its nonce is
    consumed by the transaction first, so the tuple must carry the next one.
    """
    _check_uint("current_nonce", current_nonce, UINT64_MAX)
    return current_nonce if sponsored else current_nonce + 1


# --------------------------------------------------------------------------- #
# Authorization tuple                                                         #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class AuthorizationTuple:
    """One signed EIP-7702 authorization."""
    chain_id: int
    address: ChecksumAddress
    nonce: int
    y_parity: int
    r: int
    s: int

    def __post_init__(self):
        object.__setattr__(self, "address", normalize_address(self.address))
        _check_uint("chain_id", self.chain_id, UINT256_MAX)
        _check_uint("nonce", self.nonce, UINT64_MAX)
        _check_uint("y_parity", self.y_parity, UINT8_MAX)
        _check_uint("r", self.r, UINT256_MAX)
        _check_uint("s", self.s, UINT256_MAX)

    @property
    def digest(self) -> bytes:
        return authorization_digest(self.chain_id, self.address, self.nonce)

    @property
    def clears_delegation(self) -> bool:
        return self.address == ZERO_ADDRESS

    @property
    def authority(self) -> ChecksumAddress:
        """Recovered signer. Raises InvalidSignatureError if recovery fails."""
        return recover_authority(self)

    def to_rpc_dict(self) -> dict[str, Any]:
        """Wire form accepted by nodes with strict JSON-RPC quantity parsing."""
        return {
            "chainId": to_canonical_hex(self.chain_id),
            "address": self.address,
            "nonce": to_canonical_hex(self.nonce),
            "yParity": to_canonical_hex(self.y_parity),
            "r": to_word_hex(self.r),
            "s": to_word_hex(self.s),
        }

    def to_transaction_dict(self) -> dict[str, Any]:
        """Integer form used in eth-account transaction dicts."""
        return {
            "chainId": self.chain_id,
            "address": self.address,
            "nonce": self.nonce,
            "yParity": self.y_parity,
            "r": self.r,
            "s": self.s,
        }

    @classmethod
    def from_rpc_dict(cls, data: dict[str, Any]) -> "AuthorizationTuple":
        """
        Parse a wire-format authorization.

        Accepts camelCase or snake_case keys, integer or hex quantities, and
        a legacy ``v`` (27/28) in place of ``yParity``.

        Raises:
            MalformedInputError: if a field is missing or unparseable
        """
        if not isinstance(data, dict):
            raise MalformedInputError(f"Authorization must be an object, got {type(data).__name__}")

        def field(*names: str) -> Any:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            raise MalformedInputError(f"Authorization missing field '{names[0]}'")

        if "yParity" in data or "y_parity" in data:
            y_parity = _parse_quantity("yParity", field("yParity", "y_parity"))
        elif "v" in data:
            v = _parse_quantity("v", data["v"])
            y_parity = v - 27 if v >= 27 else v
        else:
            raise MalformedInputError("Authorization missing field 'yParity'")

        return cls(
            chain_id=_parse_quantity("chainId", field("chainId", "chain_id")),
            address=field("address"),
            nonce=_parse_quantity("nonce", field("nonce")),
            y_parity=y_parity,
            r=_parse_quantity("r", field("r")),
            s=_parse_quantity("s", field("s")),
        )


def recover_authority(authorization: AuthorizationTuple) -> ChecksumAddress:
    """
    Recover the authority address from an authorization.

    Raises:
        InvalidSignatureError: if the signature values are out of range or
            do not recover to a public key
    """
    y_parity, r, s = authorization.y_parity, authorization.r, authorization.s
    if y_parity not in (0, 1):
        raise InvalidSignatureError(f"Invalid y_parity: {y_parity}")
    if not 0 < r < SECP256K1_N:
        raise InvalidSignatureError("Invalid r value")
    if not 0 < s <= SECP256K1_N // 2:
        raise InvalidSignatureError("Invalid s value")

    try:
        signature = keys.Signature(vrs=(y_parity, r, s))
        public_key = signature.recover_public_key_from_msg_hash(authorization.digest)
    except (BadSignature, ValidationError) as e:
        raise InvalidSignatureError(str(e)) from e
    return public_key.to_checksum_address()


# --------------------------------------------------------------------------- #
# Builder                                                                     #
# --------------------------------------------------------------------------- #

def _resolve_signer(signer: Any):
    if signer is None:
        raise SigningError("No signer available")
    if isinstance(signer, (str, bytes, bytearray)):
        try:
            return Account.from_key(signer)
        except Exception as e:
            raise SigningError(f"Invalid private key: {e}") from e
    if not hasattr(signer, "unsafe_sign_hash") or not hasattr(signer, "address"):
        raise SigningError(f"Signer {type(signer).__name__} cannot sign raw hashes")
    return signer


def build_authorization(
    signer: Any,
    implementation_address: str | bytes,
    chain_id: int,
    nonce: int,
) -> AuthorizationTuple:
    """
    Build and sign an EIP-7702 authorization.

    Args:
        signer: eth-account LocalAccount, or a private key (hex or bytes)
        implementation_address: Contract to delegate to; zero address clears
        chain_id: Chain ID the tuple is valid on (0 for every chain)
        nonce: Authorization nonce, see ``authorization_nonce``

    Returns:
        Signed AuthorizationTuple

    Raises:
        SigningError: if the signer is unavailable or the signature is unusable
        MalformedInputError: if the address, chain ID or nonce is invalid
    """
    address = normalize_address(implementation_address)
    digest = authorization_digest(chain_id, address, nonce)
    account = _resolve_signer(signer)

    try:
        signed = account.unsafe_sign_hash(digest)
    except Exception as e:
        raise SigningError(f"Signing backend failed: {e}") from e

    y_parity = signed.v - 27 if signed.v >= 27 else signed.v
    authorization = AuthorizationTuple(
        chain_id=chain_id,
        address=address,
        nonce=nonce,
        y_parity=y_parity,
        r=signed.r,
        s=signed.s,
    )

    try:
        authority = recover_authority(authorization)
    except InvalidSignatureError as e:
        raise SigningError(f"Signature is not recoverable: {e}") from e
    if authority != account.address:
        raise SigningError(f"Signature recovers to {authority}, expected {account.address}")

    logger.debug(
        f"Signed authorization for {authority}: chain={chain_id} impl={address} nonce={nonce}"
    )
    return authorization
