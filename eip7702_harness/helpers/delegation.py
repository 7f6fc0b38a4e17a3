"""
EIP-7702 Delegation State Model
===============================

Reference logic for what an account's code becomes after a chain processes
one or more authorization lists. Mirrors the checks a conformant client runs
for every tuple, in list order:

    1. signature must recover an authority
    2. chain_id must be 0 or the current chain
    3. nonce must be below 2**64 - 1
    4. nonce must equal the authority's current nonce

A tuple that fails any check is skipped and the rest of the list is still
processed. A valid tuple writes ``0xef0100 || address`` (or clears the code
for the zero address) and bumps the authority's nonce, so the last valid
tuple for an authority wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from eth_typing import ChecksumAddress
from hexbytes import HexBytes

from eip7702_harness.exceptions import InvalidSignatureError, MalformedInputError
from eip7702_harness.helpers.authorization import (
    UINT64_MAX,
    ZERO_ADDRESS,
    AuthorizationTuple,
    _parse_quantity,
    normalize_address,
    recover_authority,
)

logger = logging.getLogger(__name__)

EOA_DELEGATION_MARKER = b"\xef\x01\x00"
EOA_DELEGATED_CODE_LENGTH = len(EOA_DELEGATION_MARKER) + 20

NonceOracle = Union[Mapping[str, int], Callable[[ChecksumAddress], int]]


# --------------------------------------------------------------------------- #
# Delegation marker                                                           #
# --------------------------------------------------------------------------- #

def delegation_marker(address: str | bytes) -> bytes:
    """Code written to an EOA that delegates to *address* (23 bytes)."""
    return EOA_DELEGATION_MARKER + bytes(HexBytes(normalize_address(address)))


def is_delegation_marker(code: bytes) -> bool:
    return len(code) == EOA_DELEGATED_CODE_LENGTH and code.startswith(EOA_DELEGATION_MARKER)


def _code_bytes(code: str | bytes) -> bytes:
    try:
        return bytes(HexBytes(code))
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"Code is not valid hex: {code!r}") from e


def parse_delegation_marker(code: str | bytes) -> ChecksumAddress | None:
    """Return the delegate encoded in *code*, or None if it is not a marker."""
    code = _code_bytes(code)
    if not is_delegation_marker(code):
        return None
    return normalize_address(code[len(EOA_DELEGATION_MARKER):])


# --------------------------------------------------------------------------- #
# Account code state                                                          #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class AccountCodeState:
    """Delegation status of an EOA. ``delegate`` is None for a plain EOA."""
    delegate: ChecksumAddress | None = None

    @classmethod
    def plain(cls) -> "AccountCodeState":
        return cls()

    @classmethod
    def delegated(cls, address: str | bytes) -> "AccountCodeState":
        return cls(delegate=normalize_address(address))

    @classmethod
    def from_code(cls, code: str | bytes) -> "AccountCodeState":
        """
        Interpret on-chain code.

        Raises:
            MalformedInputError: if the code is neither empty nor a delegation
                marker (i.e. the account is a deployed contract)
        """
        raw = _code_bytes(code)
        if not raw:
            return cls.plain()
        delegate = parse_delegation_marker(raw)
        if delegate is None:
            raise MalformedInputError(f"Code is not a delegation marker: 0x{raw.hex()}")
        return cls(delegate=delegate)

    @property
    def is_delegated(self) -> bool:
        return self.delegate is not None

    @property
    def kind(self) -> str:
        return "delegated" if self.is_delegated else "plain"

    @property
    def code(self) -> bytes:
        return delegation_marker(self.delegate) if self.delegate else b""

    def __str__(self) -> str:
        return f"Delegated({self.delegate})" if self.delegate else "Plain EOA"


PLAIN_EOA = AccountCodeState()


# --------------------------------------------------------------------------- #
# Outcomes                                                                    #
# --------------------------------------------------------------------------- #

class SkipReason(Enum):
    BAD_SIGNATURE = "bad signature"
    CHAIN_ID_MISMATCH = "chain id mismatch"
    NONCE_OVERFLOW = "nonce overflow"
    NONCE_MISMATCH = "nonce mismatch"


@dataclass(frozen=True)
class TupleOutcome:
    """What happened to one tuple of an authorization list."""
    index: int
    authorization: AuthorizationTuple
    authority: ChecksumAddress | None
    reason: SkipReason | None = None
    state: AccountCodeState | None = None
    expected_nonce: int | None = None

    @property
    def applied(self) -> bool:
        return self.reason is None

    def describe(self) -> str:
        if self.applied:
            return f"applied -> {self.state}"
        if self.reason is SkipReason.NONCE_MISMATCH:
            return (
                f"skipped: {self.reason.value} "
                f"(tuple {self.authorization.nonce}, account {self.expected_nonce})"
            )
        return f"skipped: {self.reason.value}"


@dataclass
class TransactionFrame:
    """Authorization list of one type-4 transaction and who sent it."""
    authorization_list: Sequence[Any]
    sender: str | None = None


@dataclass
class DelegationResult:
    states: dict[ChecksumAddress, AccountCodeState]
    nonces: dict[ChecksumAddress, int]
    outcomes: list[TupleOutcome] = field(default_factory=list)

    @property
    def applied(self) -> list[TupleOutcome]:
        return [o for o in self.outcomes if o.applied]

    @property
    def skipped(self) -> list[TupleOutcome]:
        return [o for o in self.outcomes if not o.applied]

    def state_of(self, address: str | bytes) -> AccountCodeState:
        return self.states.get(normalize_address(address), PLAIN_EOA)


# --------------------------------------------------------------------------- #
# Model                                                                       #
# --------------------------------------------------------------------------- #

def _coerce_authorization_list(authorization_list: Any) -> list[AuthorizationTuple]:
    if isinstance(authorization_list, (str, bytes, Mapping)) or not isinstance(
        authorization_list, Sequence
    ):
        raise MalformedInputError(
            f"Authorization list must be a sequence, got {type(authorization_list).__name__}"
        )
    if not authorization_list:
        raise MalformedInputError("Authorization list must not be empty")

    tuples = []
    for index, entry in enumerate(authorization_list):
        if isinstance(entry, AuthorizationTuple):
            tuples.append(entry)
        elif isinstance(entry, Mapping):
            try:
                tuples.append(AuthorizationTuple.from_rpc_dict(dict(entry)))
            except MalformedInputError as e:
                raise MalformedInputError(f"Authorization #{index}: {e}") from e
        else:
            raise MalformedInputError(
                f"Authorization #{index} has unsupported type {type(entry).__name__}"
            )
    return tuples


class DelegationStateModel:
    """
    Applies authorization lists against account code states.

    Args:
        chain_id: Chain the transactions are processed on
        nonce_oracle: Mapping or callable giving an account's current nonce.
            Accounts missing from a mapping have nonce 0.
    """

    def __init__(self, chain_id: int, nonce_oracle: NonceOracle | None = None):
        self.chain_id = _parse_quantity("chain_id", chain_id)
        if nonce_oracle is None:
            nonce_oracle = {}
        if isinstance(nonce_oracle, Mapping):
            self._nonce_table = {
                normalize_address(a): _parse_quantity(f"nonce of {a}", n)
                for a, n in nonce_oracle.items()
            }
            self._nonce_source = None
        else:
            self._nonce_table = None
            self._nonce_source = nonce_oracle

    def current_nonce(self, address: ChecksumAddress, overlay: Mapping[str, int] | None = None) -> int:
        if overlay and address in overlay:
            return overlay[address]
        if self._nonce_table is not None:
            return self._nonce_table.get(address, 0)
        return int(self._nonce_source(address))

    def apply(
        self,
        current_states: Mapping[str, AccountCodeState],
        authorization_list: Sequence[Any],
        sender: str | None = None,
        nonces: Mapping[str, int] | None = None,
    ) -> DelegationResult:
        """
        Apply one transaction's authorization list.

        Args:
            current_states: Code state per address; absent accounts are plain EOAs
            authorization_list: AuthorizationTuples or wire-format dicts, in order
            sender: Account that sent the transaction; its nonce is consumed
                before the list is processed
            nonces: Nonces already advanced by earlier transactions

        Returns:
            DelegationResult with new states, advanced nonces and one outcome
            per tuple. The inputs are not modified.

        Raises:
            MalformedInputError: if the list or one of its entries is malformed
        """
        tuples = _coerce_authorization_list(authorization_list)
        states = {normalize_address(a): s for a, s in current_states.items()}
        overlay = {
            normalize_address(a): _parse_quantity(f"nonce of {a}", n) for a, n in (nonces or {}).items()
        }

        if sender is not None:
            sender = normalize_address(sender)
            overlay[sender] = self.current_nonce(sender, overlay) + 1

        outcomes = []
        for index, authorization in enumerate(tuples):
            outcome = self._apply_one(index, authorization, states, overlay)
            outcomes.append(outcome)

        return DelegationResult(states=states, nonces=overlay, outcomes=outcomes)

    def apply_sequence(
        self,
        current_states: Mapping[str, AccountCodeState],
        frames: Iterable[TransactionFrame],
    ) -> DelegationResult:
        """Apply several transactions in chain order, threading states and nonces."""
        result = DelegationResult(states=dict(current_states), nonces={})
        for frame in frames:
            step = self.apply(
                result.states, frame.authorization_list, sender=frame.sender, nonces=result.nonces
            )
            result = DelegationResult(
                states=step.states,
                nonces=step.nonces,
                outcomes=result.outcomes + step.outcomes,
            )
        return result

    def _apply_one(
        self,
        index: int,
        authorization: AuthorizationTuple,
        states: dict[ChecksumAddress, AccountCodeState],
        overlay: dict[ChecksumAddress, int],
    ) -> TupleOutcome:
        try:
            authority = recover_authority(authorization)
        except InvalidSignatureError as e:
            logger.debug(f"Authorization #{index} skipped: {e}")
            return TupleOutcome(index, authorization, None, SkipReason.BAD_SIGNATURE)

        if authorization.chain_id not in (0, self.chain_id):
            logger.debug(
                f"Authorization #{index} for {authority} skipped: "
                f"chain {authorization.chain_id} != {self.chain_id}"
            )
            return TupleOutcome(index, authorization, authority, SkipReason.CHAIN_ID_MISMATCH)

        if authorization.nonce >= UINT64_MAX:
            return TupleOutcome(index, authorization, authority, SkipReason.NONCE_OVERFLOW)

        nonce = self.current_nonce(authority, overlay)
        if authorization.nonce != nonce:
            logger.debug(
                f"Authorization #{index} for {authority} skipped: "
                f"nonce {authorization.nonce} != {nonce}"
            )
            return TupleOutcome(
                index, authorization, authority, SkipReason.NONCE_MISMATCH, expected_nonce=nonce
            )

        if authorization.address == ZERO_ADDRESS:
            state = PLAIN_EOA
        else:
            state = AccountCodeState(delegate=authorization.address)
        states[authority] = state
        overlay[authority] = nonce + 1

        logger.info(f"Authorization #{index} applied: {authority} -> {state}")
        return TupleOutcome(index, authorization, authority, state=state, expected_nonce=nonce)


def apply_authorizations(
    current_states: Mapping[str, AccountCodeState],
    authorization_list: Sequence[Any],
    chain_id: int,
    nonce_oracle: NonceOracle | None = None,
    sender: str | None = None,
) -> DelegationResult:
    """Functional shortcut for ``DelegationStateModel(...).apply(...)``."""
    model = DelegationStateModel(chain_id, nonce_oracle)
    return model.apply(current_states, authorization_list, sender=sender)
