"""
Configuration package for the EIP-7702 harness.
"""

from eip7702_harness.config.network import (
    CHAINS,
    CHAIN_ID_TO_NAME,
    DEFAULT_CHAIN,
    RECEIPT_TIMEOUT,
    RECEIPT_POLL_INTERVAL,
    get_chain_config,
    get_chain_id,
    get_gas_settings,
    get_rpc_url,
    get_web3,
)

from eip7702_harness.config.accounts import (
    load_private_keys,
    load_accounts,
)

__all__ = [
    # Network
    'CHAINS',
    'CHAIN_ID_TO_NAME',
    'DEFAULT_CHAIN',
    'RECEIPT_TIMEOUT',
    'RECEIPT_POLL_INTERVAL',
    'get_chain_config',
    'get_chain_id',
    'get_gas_settings',
    'get_rpc_url',
    'get_web3',

    # Accounts
    'load_private_keys',
    'load_accounts',
]
