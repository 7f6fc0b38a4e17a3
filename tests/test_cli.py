"""Tests for the command line tool."""

import json
import logging
from types import SimpleNamespace
from unittest import mock

import pytest
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes

from eip7702_harness.cli import main, simulate_scenario
from eip7702_harness.exceptions import MalformedInputError
from eip7702_harness.helpers.authorization import build_authorization
from eip7702_harness.helpers.delegation import AccountCodeState, delegation_marker

from conftest import AUTHORITY_KEY, BATCH_OPERATIONS, CHAIN_ID, SIMPLE_LOGIC


@pytest.fixture(autouse=True)
def no_configured_keys(monkeypatch, tmp_path):
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    monkeypatch.delenv("PRIVATE_KEYS", raising=False)
    monkeypatch.setenv("EIP7702_LOG_DIR", str(tmp_path / "logs"))
    yield
    logging.getLogger("eip7702_harness").handlers.clear()


class TestMarkerCommand:

    def test_prints_marker(self, capsys):
        assert main(["marker", SIMPLE_LOGIC]) == 0
        assert capsys.readouterr().out.strip() == "0xef0100eb601f847d25ad6bdd9bffafbbb6b724c0b71a7d"

    def test_decodes_marker(self, capsys):
        assert main(["marker", "--decode", "0xef0100eb601f847d25ad6bdd9bffafbbb6b724c0b71a7d"]) == 0
        assert capsys.readouterr().out.strip() == SIMPLE_LOGIC

    def test_decode_rejects_other_code(self, capsys):
        assert main(["marker", "--decode", "0x6080"]) == 1

    def test_invalid_address(self, capsys):
        assert main(["marker", "0x1234"]) == 1
        assert "Invalid address" in capsys.readouterr().err


class TestBuildCommand:

    def test_self_submitted_nonce(self, authority, capsys):
        code = main([
            "build", "--key", AUTHORITY_KEY, "--implementation", SIMPLE_LOGIC,
            "--current-nonce", "62", "--chain-id", str(CHAIN_ID),
        ])
        output = json.loads(capsys.readouterr().out)

        assert code == 0
        assert output["nonce"] == "0x3f"
        assert output["chainId"] == "0x51fa"
        assert output["authority"] == authority.address

    def test_sponsored_nonce(self, capsys):
        main([
            "build", "--key", AUTHORITY_KEY, "--implementation", SIMPLE_LOGIC,
            "--current-nonce", "62", "--sponsored", "--chain", "apothem",
        ])
        output = json.loads(capsys.readouterr().out)

        assert output["nonce"] == "0x3e"
        assert output["chainId"] == "0x33"

    def test_uses_configured_key(self, authority, monkeypatch, capsys):
        monkeypatch.setenv("PRIVATE_KEY", AUTHORITY_KEY)
        main(["build", "--clear", "--nonce", "0", "--chain-id", "0"])
        output = json.loads(capsys.readouterr().out)

        assert output["authority"] == authority.address
        assert int(output["address"], 16) == 0

    def test_unknown_chain(self, capsys):
        code = main([
            "build", "--key", AUTHORITY_KEY, "--implementation", SIMPLE_LOGIC,
            "--nonce", "0", "--chain", "nosuch",
        ])
        assert code == 1
        assert "Error: Unsupported chain: nosuch" in capsys.readouterr().err

    def test_without_key(self, capsys):
        code = main(["build", "--implementation", SIMPLE_LOGIC, "--nonce", "0", "--chain-id", "1"])
        assert code == 1
        assert "No private key" in capsys.readouterr().err


class TestSimulate:

    def scenario(self, authority):
        first = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 63)
        stale = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 63 + 999)
        second = build_authorization(authority, BATCH_OPERATIONS, CHAIN_ID, 65)
        return {
            "chainId": CHAIN_ID,
            "nonces": {authority.address: 62},
            "transactions": [
                {"sender": authority.address, "authorizationList": [first.to_rpc_dict()]},
                {"sender": authority.address, "authorizationList": [stale.to_rpc_dict(), second.to_rpc_dict()]},
            ],
        }

    def test_simulate_scenario(self, authority):
        result = simulate_scenario(self.scenario(authority))

        assert [o.applied for o in result.outcomes] == [True, False, True]
        assert result.state_of(authority.address) == AccountCodeState.delegated(BATCH_OPERATIONS)

    def test_single_list_with_prior_state(self, authority):
        clear = build_authorization(authority, "0x" + "00" * 20, CHAIN_ID, 0)
        result = simulate_scenario({
            "chainId": CHAIN_ID,
            "states": {authority.address: SIMPLE_LOGIC},
            "authorizationList": [clear.to_rpc_dict()],
        })
        assert not result.state_of(authority.address).is_delegated

    def test_hex_chain_id_and_nonces(self, authority):
        auth = build_authorization(authority, SIMPLE_LOGIC, CHAIN_ID, 63)
        result = simulate_scenario({
            "chainId": hex(CHAIN_ID),
            "nonces": {authority.address: "0x3e"},
            "sender": authority.address,
            "authorizationList": [auth.to_rpc_dict()],
        })

        assert result.outcomes[0].applied
        assert result.nonces[authority.address] == 64

    @pytest.mark.parametrize("scenario", [
        {"chainId": "0xzz", "authorizationList": []},
        {"chainId": 1, "nonces": {"0x" + "11" * 20: "sixty"}, "authorizationList": []},
        {"chainId": 1, "nonces": [62], "authorizationList": []},
    ])
    def test_bad_quantities_are_malformed(self, scenario):
        with pytest.raises(MalformedInputError):
            simulate_scenario(scenario)

    def test_simulate_command_reports_bad_nonce(self, tmp_path, capsys):
        path = tmp_path / "scenario.json"
        path.write_text(json.dumps({
            "chainId": CHAIN_ID, "nonces": {"0x" + "11" * 20: "0xzz"}, "authorizationList": [],
        }))

        assert main(["simulate", str(path)]) == 1
        assert "not a valid quantity" in capsys.readouterr().err

    def test_scenario_without_transactions(self):
        with pytest.raises(MalformedInputError):
            simulate_scenario({"chainId": 1})

    def test_simulate_command(self, authority, tmp_path, capsys):
        path = tmp_path / "scenario.json"
        path.write_text(json.dumps(self.scenario(authority)))

        assert main(["simulate", str(path)]) == 0
        out = capsys.readouterr().out
        assert "nonce mismatch" in out
        assert "Delegated(" + BATCH_OPERATIONS + ")" in out

    def test_simulate_malformed_file(self, tmp_path, capsys):
        path = tmp_path / "scenario.json"
        path.write_text("{not json")

        assert main(["simulate", str(path)]) == 1
        assert "Invalid JSON" in capsys.readouterr().err


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


class TestChainCommands:

    def make_w3(self, nonce, codes):
        w3 = mock.MagicMock()
        w3.eth.chain_id = CHAIN_ID
        w3.eth.get_transaction_count.return_value = nonce
        w3.eth.get_code.side_effect = list(codes)
        w3.eth.get_block.return_value = {"baseFeePerGas": 1}
        w3.eth.send_raw_transaction.return_value = HexBytes("0x" + "cd" * 32)
        w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 1, "gasUsed": 51_000, "blockNumber": 3,
        }
        return w3

    def test_status(self, authority, monkeypatch, capsys):
        w3 = self.make_w3(63, [delegation_marker(SIMPLE_LOGIC)])
        monkeypatch.setattr("eip7702_harness.cli.get_web3", lambda chain=None: w3)

        assert main(["status", authority.address]) == 0
        out = capsys.readouterr().out
        assert "Delegated(" + SIMPLE_LOGIC + ")" in out
        assert "63" in out

    def test_delegate(self, authority, monkeypatch, capsys):
        w3 = self.make_w3(62, [b"", delegation_marker(SIMPLE_LOGIC)])
        monkeypatch.setattr("eip7702_harness.cli.get_web3", lambda chain=None: w3)

        with mock.patch.object(
            LocalAccount, "sign_transaction", return_value=SimpleNamespace(raw_transaction=b"\x04")
        ):
            code = main([
                "delegate", "--key", AUTHORITY_KEY, "--implementation", SIMPLE_LOGIC,
                "--call", "setValue(uint256)", "--arg", "12345",
            ])

        assert code == 0
        assert "Match:       YES" in capsys.readouterr().out
