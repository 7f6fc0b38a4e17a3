"""Tests for the web3-facing EIP-7702 sender, using a mocked Web3."""

from types import SimpleNamespace
from unittest import mock

import pytest
from eth_account.signers.local import LocalAccount
from eth_utils import keccak
from hexbytes import HexBytes
from web3.exceptions import TimeExhausted

from eip7702_harness.exceptions import MalformedInputError, TransactionTimeoutError
from eip7702_harness.executor.eip7702_sender import (
    ChainNonceOracle,
    build_type4_transaction,
    delegate,
    encode_call,
    read_account_state,
    send_type4_transaction,
)
from eip7702_harness.helpers.authorization import build_authorization
from eip7702_harness.helpers.delegation import PLAIN_EOA, AccountCodeState, delegation_marker

from conftest import CHAIN_ID, SIMPLE_LOGIC

TX_HASH = HexBytes("0x" + "ab" * 32)


def make_w3(nonces, codes=(b"",)):
    """Mock Web3 with fixed nonces and a sequence of get_code results."""
    w3 = mock.MagicMock()
    w3.eth.chain_id = CHAIN_ID
    w3.eth.get_transaction_count.side_effect = lambda address, block="latest": nonces.get(address, 0)
    w3.eth.get_code.side_effect = list(codes)
    w3.eth.get_block.return_value = {"baseFeePerGas": 7}
    w3.eth.send_raw_transaction.return_value = TX_HASH
    w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 1,
        "gasUsed": 46_000,
        "blockNumber": 12,
    }
    return w3


@pytest.fixture
def signed_tx():
    with mock.patch.object(
        LocalAccount, "sign_transaction", return_value=SimpleNamespace(raw_transaction=b"\x04raw")
    ) as patched:
        yield patched


class TestChainReads:

    def test_nonce_oracle(self, authority):
        w3 = make_w3({authority.address: 62})
        assert ChainNonceOracle(w3)(authority.address) == 62
        w3.eth.get_transaction_count.assert_called_with(authority.address, "latest")

    def test_read_delegated_code(self, authority):
        w3 = make_w3({}, codes=[HexBytes(delegation_marker(SIMPLE_LOGIC))])
        assert read_account_state(w3, authority.address) == AccountCodeState.delegated(SIMPLE_LOGIC)

    def test_read_plain_code(self, authority):
        w3 = make_w3({}, codes=[HexBytes(b"")])
        assert read_account_state(w3, authority.address) == PLAIN_EOA


class TestEncodeCall:

    def test_set_value(self):
        data = encode_call("setValue(uint256)", ["12345"])
        assert data == keccak(text="setValue(uint256)")[:4] + (12345).to_bytes(32, "big")

    def test_no_arguments(self):
        assert encode_call("increment()") == keccak(text="increment()")[:4]

    def test_argument_count_mismatch(self):
        with pytest.raises(MalformedInputError):
            encode_call("executeOperation(uint256,uint256)", [1])

    def test_invalid_signature(self):
        with pytest.raises(MalformedInputError):
            encode_call("setValue", [1])


class TestType4Transaction:

    def test_transaction_fields(self, authority):
        w3 = make_w3({authority.address: 62})
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 63)

        tx = build_type4_transaction(w3, authority.address, authority.address, b"\x01", [auth])

        assert tx["type"] == 4
        assert tx["chainId"] == CHAIN_ID
        assert tx["nonce"] == 62
        assert tx["to"] == authority.address
        assert tx["maxFeePerGas"] == 7 + tx["maxPriorityFeePerGas"] * 2
        assert tx["authorizationList"] == [auth.to_transaction_dict()]

    def test_gas_price_not_queried_when_block_has_base_fee(self, authority):
        w3 = make_w3({authority.address: 0})
        gas_price = mock.PropertyMock(return_value=99)
        type(w3.eth).gas_price = gas_price
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 1)

        tx = build_type4_transaction(w3, authority.address, authority.address, b"", [auth])

        gas_price.assert_not_called()
        assert tx["maxFeePerGas"] == 7 + tx["maxPriorityFeePerGas"] * 2

    def test_gas_price_fallback_without_base_fee(self, authority):
        w3 = make_w3({authority.address: 0})
        w3.eth.get_block.return_value = {}
        w3.eth.gas_price = 11
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 1)

        tx = build_type4_transaction(w3, authority.address, authority.address, b"", [auth])

        assert tx["maxFeePerGas"] == 11 + tx["maxPriorityFeePerGas"] * 2

    def test_fixed_price_chain_settings(self, authority):
        w3 = make_w3({authority.address: 0})
        w3.eth.chain_id = 551
        auth = build_authorization(authority, SIMPLE_LOGIC, 551, 1)

        tx = build_type4_transaction(w3, authority.address, authority.address, b"", [auth])

        assert tx["gas"] == 2_100_000
        assert tx["maxFeePerGas"] == 300_000_000_000
        assert tx["maxPriorityFeePerGas"] == 300_000_000_000
        w3.eth.get_block.assert_not_called()

    def test_explicit_gas_limit(self, authority):
        w3 = make_w3({authority.address: 0})
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 1)
        tx = build_type4_transaction(w3, authority.address, authority.address, b"", [auth], gas=90_000)
        assert tx["gas"] == 90_000

    def test_empty_authorization_list(self, authority):
        with pytest.raises(MalformedInputError):
            build_type4_transaction(make_w3({}), authority.address, authority.address, b"", [])

    def test_send_returns_receipt_summary(self, authority, signed_tx):
        w3 = make_w3({authority.address: 62})
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 63)

        report = send_type4_transaction(w3, authority, authority.address, b"", [auth])

        w3.eth.send_raw_transaction.assert_called_once_with(b"\x04raw")
        assert report.tx_hash == TX_HASH.to_0x_hex()
        assert report.succeeded
        assert report.gas_used == 46_000
        assert report.block_number == 12

    def test_receipt_timeout(self, authority, signed_tx):
        w3 = make_w3({authority.address: 0})
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 1)

        with pytest.raises(TransactionTimeoutError):
            send_type4_transaction(w3, authority, authority.address, b"", [auth], timeout=1)


class TestDelegate:

    def test_self_submitted_delegation(self, authority, signed_tx):
        w3 = make_w3(
            {authority.address: 62},
            codes=[b"", delegation_marker(SIMPLE_LOGIC)],
        )

        report = delegate(w3, authority, SIMPLE_LOGIC, data=encode_call("setValue(uint256)", [12345]))

        assert report.authorization.nonce == 63
        assert report.expected == AccountCodeState.delegated(SIMPLE_LOGIC)
        assert report.matches
        tx = signed_tx.call_args.args[0]
        assert tx["to"] == authority.address
        assert tx["authorizationList"][0]["nonce"] == 63

    def test_sponsored_delegation(self, authority, sponsor, signed_tx):
        w3 = make_w3(
            {authority.address: 62, sponsor.address: 5},
            codes=[b"", delegation_marker(SIMPLE_LOGIC)],
        )

        report = delegate(w3, authority, SIMPLE_LOGIC, sponsor=sponsor)

        assert report.authorization.nonce == 62
        assert report.matches
        tx = signed_tx.call_args.args[0]
        assert tx["nonce"] == 5
        assert tx["to"] == authority.address

    def test_mismatch_is_reported(self, authority, signed_tx, caplog):
        w3 = make_w3({authority.address: 0}, codes=[b"", b""])

        report = delegate(w3, authority, SIMPLE_LOGIC)

        assert not report.matches
        assert report.observed == PLAIN_EOA
        assert "model predicted" in caplog.text
