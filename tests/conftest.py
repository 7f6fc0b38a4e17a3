import pytest
from eth_account import Account
from eth_utils import to_checksum_address

CHAIN_ID = 20986

SIMPLE_LOGIC = to_checksum_address("0xeb601f847d25ad6bdd9bffafbbb6b724c0b71a7d")
BATCH_OPERATIONS = to_checksum_address("0x" + "2b" * 20)

# Test keys (DO NOT USE IN PRODUCTION)
AUTHORITY_KEY = "0x" + "11" * 32
SPONSOR_KEY = "0x" + "22" * 32
OTHER_KEY = "0x" + "33" * 32


@pytest.fixture
def authority():
    return Account.from_key(AUTHORITY_KEY)


@pytest.fixture
def sponsor():
    return Account.from_key(SPONSOR_KEY)


@pytest.fixture
def other():
    return Account.from_key(OTHER_KEY)
