"""
EIP-7702 Transaction Sender.
Handles construction, signing, and broadcasting of Type 4 transactions, and
the chain reads (nonce, account code) the delegation model needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from eth_abi import encode
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from eth_utils import keccak
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted

from eip7702_harness.config.network import (
    DEFAULT_PRIORITY_FEE_WEI,
    RECEIPT_POLL_INTERVAL,
    RECEIPT_TIMEOUT,
    get_gas_settings,
)
from eip7702_harness.exceptions import MalformedInputError, TransactionTimeoutError
from eip7702_harness.helpers.authorization import (
    AuthorizationTuple,
    authorization_nonce,
    build_authorization,
    normalize_address,
)
from eip7702_harness.helpers.delegation import (
    AccountCodeState,
    DelegationResult,
    DelegationStateModel,
)

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Chain reads                                                                 #
# --------------------------------------------------------------------------- #

class ChainNonceOracle:
    """Nonce oracle backed by ``eth_getTransactionCount``."""

    def __init__(self, w3: Web3, block_identifier: str = "latest"):
        self.w3 = w3
        self.block_identifier = block_identifier

    def __call__(self, address: ChecksumAddress) -> int:
        return self.w3.eth.get_transaction_count(address, self.block_identifier)


def read_account_state(w3: Web3, address: str) -> AccountCodeState:
    """Read an account's code and interpret it as a delegation state."""
    code = w3.eth.get_code(normalize_address(address))
    return AccountCodeState.from_code(code)


# --------------------------------------------------------------------------- #
# Call data                                                                   #
# --------------------------------------------------------------------------- #

def _split_types(signature: str) -> tuple[str, list[str]]:
    if "(" not in signature or not signature.endswith(")"):
        raise MalformedInputError(f"Invalid function signature: {signature}")
    name, params = signature[:-1].split("(", 1)
    types = [t.strip() for t in params.split(",") if t.strip()]
    return name, types


def _coerce_arg(abi_type: str, value: Any) -> Any:
    """Convert CLI strings into the Python values eth_abi expects."""
    if not isinstance(value, str):
        return value
    if abi_type.startswith(("uint", "int")):
        return int(value, 0)
    if abi_type == "bool":
        return value.lower() in ("1", "true", "yes")
    if abi_type == "address":
        return normalize_address(value)
    if abi_type.startswith("bytes"):
        return bytes(HexBytes(value))
    return value


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """
    ABI-encode a call such as ``encode_call("setValue(uint256)", [12345])``.

    Only flat (non-tuple) parameter types are supported.
    """
    _, types = _split_types(signature)
    if len(types) != len(args):
        raise MalformedInputError(f"{signature} takes {len(types)} arguments, got {len(args)}")
    selector = keccak(text=signature.replace(" ", ""))[:4]
    if not types:
        return selector
    values = [_coerce_arg(t, v) for t, v in zip(types, args)]
    return selector + encode(types, values)


# --------------------------------------------------------------------------- #
# Type-4 transactions                                                         #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class TransactionReport:
    tx_hash: str
    status: int
    gas_used: int
    block_number: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_receipt(cls, tx_hash: str, receipt: Any) -> "TransactionReport":
        return cls(
            tx_hash=tx_hash,
            status=receipt["status"],
            gas_used=receipt["gasUsed"],
            block_number=receipt["blockNumber"],
        )


def build_type4_transaction(
    w3: Web3,
    sender: str,
    to: str,
    data: bytes | str,
    authorization_list: Sequence[AuthorizationTuple],
    gas: int | None = None,
    max_fee_per_gas: int | None = None,
    max_priority_fee_per_gas: int | None = None,
    value: int = 0,
) -> dict[str, Any]:
    """
    Build an unsigned EIP-7702 transaction dict.

    Args:
        w3: Web3 instance
        sender: Account that will sign and pay for the transaction
        to: Call target; the delegating EOA for calls into its new code
        data: Calldata as bytes or hex string
        authorization_list: Signed authorizations, in processing order
        gas: Gas limit, defaults to the chain's configured limit

    Returns:
        Transaction dictionary ready for ``LocalAccount.sign_transaction``
    """
    if not authorization_list:
        raise MalformedInputError("Type-4 transactions need at least one authorization")

    chain_id = w3.eth.chain_id
    gas_settings = get_gas_settings(chain_id)
    if gas is None:
        gas = gas_settings["gas"]

    # Fixed-price chains pay the configured gas price, like a legacy transaction
    fixed_price = gas_settings["gas_price"]
    if max_priority_fee_per_gas is None:
        max_priority_fee_per_gas = fixed_price or DEFAULT_PRIORITY_FEE_WEI
    if max_fee_per_gas is None:
        if fixed_price:
            max_fee_per_gas = fixed_price
        else:
            latest_block = w3.eth.get_block("latest")
            base_fee = latest_block.get("baseFeePerGas")
            if base_fee is None:
                base_fee = w3.eth.gas_price
            max_fee_per_gas = base_fee + max_priority_fee_per_gas * 2

    sender = normalize_address(sender)
    return {
        "type": 4,
        "chainId": chain_id,
        "nonce": w3.eth.get_transaction_count(sender),
        "to": normalize_address(to),
        "value": value,
        "data": HexBytes(data),
        "gas": gas,
        "maxFeePerGas": max_fee_per_gas,
        "maxPriorityFeePerGas": max_priority_fee_per_gas,
        "authorizationList": [a.to_transaction_dict() for a in authorization_list],
    }


def send_type4_transaction(
    w3: Web3,
    account: LocalAccount,
    to: str,
    data: bytes | str,
    authorization_list: Sequence[AuthorizationTuple],
    timeout: float = RECEIPT_TIMEOUT,
    poll_interval: float = RECEIPT_POLL_INTERVAL,
    **tx_kwargs: Any,
) -> TransactionReport:
    """
    Sign, broadcast and wait for a type-4 transaction.

    Raises:
        TransactionTimeoutError: if no receipt shows up within *timeout*
    """
    tx = build_type4_transaction(w3, account.address, to, data, authorization_list, **tx_kwargs)
    signed_tx = account.sign_transaction(tx)
    tx_hash = HexBytes(w3.eth.send_raw_transaction(signed_tx.raw_transaction)).to_0x_hex()
    logger.info(
        f"Sent EIP-7702 transaction {tx_hash} from {account.address} "
        f"with {len(authorization_list)} authorization(s)"
    )

    try:
        receipt = w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_interval
        )
    except TimeExhausted as e:
        raise TransactionTimeoutError(
            f"Transaction {tx_hash} not confirmed after {timeout} seconds"
        ) from e

    report = TransactionReport.from_receipt(tx_hash, receipt)
    logger.info(
        f"Transaction {tx_hash} mined in block {report.block_number} "
        f"(status={report.status}, gasUsed={report.gas_used})"
    )
    return report


# --------------------------------------------------------------------------- #
# End-to-end delegation                                                       #
# --------------------------------------------------------------------------- #

@dataclass
class DelegationReport:
    authorization: AuthorizationTuple
    transaction: TransactionReport
    prediction: DelegationResult
    observed: AccountCodeState

    @property
    def expected(self) -> AccountCodeState:
        return self.prediction.state_of(self.authorization.authority)

    @property
    def matches(self) -> bool:
        return self.expected == self.observed


def delegate(
    w3: Web3,
    authority: LocalAccount,
    implementation_address: str,
    sponsor: LocalAccount | None = None,
    data: bytes | str = b"",
    to: str | None = None,
    chain_id: int | None = None,
    **send_kwargs: Any,
) -> DelegationReport:
    """
    Delegate *authority*'s code to *implementation_address* on chain.

    The authorization nonce follows the sponsorship rule: the authority's
    current nonce when *sponsor* submits, current nonce + 1 otherwise. The
    model's prediction is computed before sending and compared with the code
    read back afterwards.

    Args:
        w3: Web3 instance
        authority: Account whose code is delegated
        implementation_address: Delegation target, or the zero address to clear
        sponsor: Optional account that submits and pays for the transaction
        data: Calldata executed against ``to`` after delegation
        to: Call target, defaults to the authority itself
        chain_id: Authorization chain ID, defaults to the connected chain
    """
    submitter = sponsor or authority
    sponsored = submitter.address != authority.address
    network_chain_id = w3.eth.chain_id
    if chain_id is None:
        chain_id = network_chain_id

    current_nonce = w3.eth.get_transaction_count(authority.address)
    nonce = authorization_nonce(current_nonce, sponsored=sponsored)
    authorization = build_authorization(authority, implementation_address, chain_id, nonce)

    before = read_account_state(w3, authority.address)
    model = DelegationStateModel(network_chain_id, ChainNonceOracle(w3))
    prediction = model.apply(
        {authority.address: before}, [authorization], sender=submitter.address
    )

    report = send_type4_transaction(
        w3, submitter, to or authority.address, data, [authorization], **send_kwargs
    )
    observed = read_account_state(w3, authority.address)

    result = DelegationReport(authorization, report, prediction, observed)
    if not result.matches:
        logger.warning(
            f"Account {authority.address} is {observed}, model predicted {result.expected}"
        )
    return result
