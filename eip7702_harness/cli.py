"""CLI commands for building and checking EIP-7702 authorizations.

Usage::

    python -m eip7702_harness marker 0xeb601f847d25ad6bdd9bffafbbb6b724c0b71a7d
    python -m eip7702_harness build --implementation 0x... --current-nonce 62
    python -m eip7702_harness simulate scenario.json
    python -m eip7702_harness status 0x... --chain apothem
    python -m eip7702_harness delegate --implementation 0x... --call "setValue(uint256)" --arg 12345
"""

import argparse
import json
import sys
from typing import Any

from eth_account import Account
from tabulate import tabulate

from eip7702_harness.config.accounts import load_private_keys
from eip7702_harness.config.logging_config import get_cli_logger
from eip7702_harness.config.network import get_chain_config, get_web3
from eip7702_harness.exceptions import HarnessError, MalformedInputError, SigningError
from eip7702_harness.helpers.authorization import (
    ZERO_ADDRESS,
    authorization_nonce,
    build_authorization,
    normalize_address,
)
from eip7702_harness.helpers.delegation import (
    AccountCodeState,
    DelegationResult,
    DelegationStateModel,
    TransactionFrame,
    delegation_marker,
    parse_delegation_marker,
)


def _signer_key(args, index: int = 0) -> str:
    if getattr(args, "key", None):
        return args.key
    keys = load_private_keys()
    if len(keys) <= index:
        raise SigningError(
            f"No private key #{index} configured (set PRIVATE_KEY or PRIVATE_KEYS, or pass --key)"
        )
    return keys[index]


def _account(key: str):
    try:
        return Account.from_key(key)
    except Exception as e:
        raise SigningError(f"Invalid private key: {e}") from e


# --------------------------------------------------------------------------- #
# marker                                                                      #
# --------------------------------------------------------------------------- #

def show_marker(args):
    """Print the delegation marker for an address, or decode one."""
    if args.decode:
        delegate = parse_delegation_marker(args.value)
        if delegate is None:
            print("Not a delegation marker")
            return 1
        print(delegate)
        return 0
    print("0x" + delegation_marker(args.value).hex())
    return 0


# --------------------------------------------------------------------------- #
# build                                                                       #
# --------------------------------------------------------------------------- #

def build_tuple(args):
    """Sign an authorization and print its wire form."""
    if args.nonce is None and args.current_nonce is None:
        raise MalformedInputError("Pass --nonce or --current-nonce")
    nonce = args.nonce
    if nonce is None:
        nonce = authorization_nonce(args.current_nonce, sponsored=args.sponsored)

    chain_id = args.chain_id
    if chain_id is None:
        chain_id = get_chain_config(args.chain)["chain_id"]

    implementation = ZERO_ADDRESS if args.clear else args.implementation
    if implementation is None:
        raise MalformedInputError("Pass --implementation or --clear")

    authorization = build_authorization(_signer_key(args), implementation, chain_id, nonce)
    output = authorization.to_rpc_dict()
    output["authority"] = authorization.authority
    print(json.dumps(output, indent=2))
    return 0


# --------------------------------------------------------------------------- #
# simulate                                                                    #
# --------------------------------------------------------------------------- #

def simulate_scenario(scenario: dict[str, Any]) -> DelegationResult:
    """
    Run a JSON scenario through the delegation model.

    Scenario keys: ``chainId``, ``nonces`` (address -> nonce), optional
    ``states`` (address -> delegate address or null) and either
    ``transactions`` (list of ``{sender?, authorizationList}``) or a single
    top-level ``authorizationList`` with optional ``sender``.
    """
    if not isinstance(scenario, dict) or "chainId" not in scenario:
        raise MalformedInputError("Scenario must be an object with a 'chainId'")

    states = {}
    for address, delegate in (scenario.get("states") or {}).items():
        states[address] = AccountCodeState.delegated(delegate) if delegate else AccountCodeState()

    if "transactions" in scenario:
        transactions = scenario["transactions"]
    elif "authorizationList" in scenario:
        transactions = [scenario]
    else:
        raise MalformedInputError("Scenario has no 'transactions' or 'authorizationList'")

    frames = []
    for tx in transactions:
        if not isinstance(tx, dict) or "authorizationList" not in tx:
            raise MalformedInputError("Each transaction needs an 'authorizationList'")
        frames.append(TransactionFrame(tx["authorizationList"], tx.get("sender")))

    nonces = scenario.get("nonces") or {}
    if not isinstance(nonces, dict):
        raise MalformedInputError("Scenario 'nonces' must map addresses to nonces")

    model = DelegationStateModel(scenario["chainId"], nonces)
    return model.apply_sequence(states, frames)


def simulate(args):
    """Print per-tuple outcomes and final states for a scenario file."""
    try:
        with open(args.scenario) as f:
            scenario = json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedInputError(f"Invalid JSON in {args.scenario}: {e}") from e

    result = simulate_scenario(scenario)

    rows = []
    for position, outcome in enumerate(result.outcomes):
        rows.append([
            position,
            outcome.authority or "?",
            outcome.authorization.address,
            outcome.authorization.nonce,
            outcome.describe(),
        ])
    print(tabulate(rows, headers=["#", "Authority", "Target", "Nonce", "Result"], tablefmt="grid"))

    state_rows = [
        [address, str(state), "0x" + state.code.hex(), result.nonces.get(address, "-")]
        for address, state in sorted(result.states.items())
    ]
    print("\nFinal states:")
    print(tabulate(state_rows, headers=["Account", "State", "Code", "Nonce"], tablefmt="grid"))
    return 0


# --------------------------------------------------------------------------- #
# chain commands                                                              #
# --------------------------------------------------------------------------- #

def show_status(args):
    """Read an account's code and nonce from the chain."""
    from eip7702_harness.executor.eip7702_sender import read_account_state

    w3 = get_web3(args.chain)
    address = normalize_address(args.address)
    state = read_account_state(w3, address)
    nonce = w3.eth.get_transaction_count(address)
    print(tabulate(
        [[address, str(state), "0x" + state.code.hex(), nonce]],
        headers=["Account", "State", "Code", "Nonce"],
        tablefmt="grid",
    ))
    return 0


def send_delegation(args):
    """Send a type-4 transaction and compare the result with the model."""
    from eip7702_harness.executor.eip7702_sender import delegate, encode_call

    w3 = get_web3(args.chain)
    authority = _account(_signer_key(args))
    sponsor = None
    if args.sponsor_key:
        sponsor = _account(args.sponsor_key)
    elif args.sponsor_index is not None:
        sponsor = _account(_signer_key(argparse.Namespace(), args.sponsor_index))

    data = encode_call(args.call, args.arg or []) if args.call else b""
    implementation = ZERO_ADDRESS if args.clear else args.implementation
    if implementation is None:
        raise MalformedInputError("Pass --implementation or --clear")

    report = delegate(w3, authority, implementation, sponsor=sponsor, data=data)

    print(f"Transaction: {report.transaction.tx_hash}")
    print(f"Block:       {report.transaction.block_number}")
    print(f"Status:      {'Success (1)' if report.transaction.succeeded else 'Failed (0)'}")
    print(f"Gas used:    {report.transaction.gas_used}")
    print(f"Expected:    {report.expected}")
    print(f"Observed:    {report.observed}")
    print(f"Match:       {'YES' if report.matches else 'NO'}")
    return 0 if report.matches and report.transaction.succeeded else 1


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='Build and check EIP-7702 authorizations'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    parser.add_argument('--log-file', help='Also log to this file under EIP7702_LOG_DIR')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    marker_parser = subparsers.add_parser('marker', help='Show the delegation marker for an address')
    marker_parser.add_argument('value', help='Implementation address (or code with --decode)')
    marker_parser.add_argument('--decode', action='store_true', help='Decode a marker instead')
    marker_parser.set_defaults(func=show_marker)

    build_parser = subparsers.add_parser('build', help='Sign an authorization tuple')
    build_parser.add_argument('--implementation', help='Contract to delegate to')
    build_parser.add_argument('--clear', action='store_true', help='Delegate to the zero address')
    build_parser.add_argument('--nonce', type=int, help='Explicit authorization nonce')
    build_parser.add_argument('--current-nonce', type=int,
                              help='Authority nonce; the authorization nonce is derived from it')
    build_parser.add_argument('--sponsored', action='store_true',
                              help='Another account submits the transaction')
    build_parser.add_argument('--chain-id', type=int, help='Chain ID (0 for any chain)')
    build_parser.add_argument('--chain', help='Network name used when --chain-id is absent')
    build_parser.add_argument('--key', help='Private key (default: PRIVATE_KEY)')
    build_parser.set_defaults(func=build_tuple)

    simulate_parser = subparsers.add_parser('simulate', help='Apply a scenario file to the model')
    simulate_parser.add_argument('scenario', help='Path to scenario JSON')
    simulate_parser.set_defaults(func=simulate)

    status_parser = subparsers.add_parser('status', help='Show on-chain delegation state')
    status_parser.add_argument('address', help='Account address')
    status_parser.add_argument('--chain', help='Network name')
    status_parser.set_defaults(func=show_status)

    delegate_parser = subparsers.add_parser('delegate', help='Send a type-4 delegation transaction')
    delegate_parser.add_argument('--implementation', help='Contract to delegate to')
    delegate_parser.add_argument('--clear', action='store_true', help='Delegate to the zero address')
    delegate_parser.add_argument('--key', help='Authority private key (default: PRIVATE_KEY)')
    delegate_parser.add_argument('--sponsor-key', help='Sponsor private key')
    delegate_parser.add_argument('--sponsor-index', type=int,
                                 help='Use configured key #N as sponsor')
    delegate_parser.add_argument('--call', help='Function signature, e.g. "setValue(uint256)"')
    delegate_parser.add_argument('--arg', action='append', help='Call argument (repeatable)')
    delegate_parser.add_argument('--chain', help='Network name')
    delegate_parser.set_defaults(func=send_delegation)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    get_cli_logger(verbose=args.verbose, log_file=args.log_file)

    try:
        return args.func(args)
    except (HarnessError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
