"""
Network configuration for the EIP-7702 harness.

Chains the harness is exercised against. The default network comes from
the CHAIN environment variable and RPC_URL overrides its endpoint.
"""

import os
from typing import Any


# =============================================================================
# CHAIN CONFIGURATIONS
# =============================================================================

CHAINS: dict[str, dict[str, Any]] = {
    "hardhat": {
        "chain_id": 20986,
        "name": "Hardhat (in-process)",
        "currency": "ETH",
        "rpc_urls": ["http://127.0.0.1:8545"],
        "timeout": 30,
    },
    "devnet": {
        "chain_id": 551,
        "name": "XDC Devnet",
        "currency": "XDC",
        "rpc_urls": ["https://devnetstats.hashlabs.apothem.network/devnet"],
        "timeout": 60,
        "gas_price": 300_000_000_000,
        "gas": 2_100_000,
    },
    "apothem": {
        "chain_id": 51,
        "name": "XDC Apothem Testnet",
        "currency": "XDC",
        "rpc_urls": ["https://erpc.apothem.network/"],
        "timeout": 60,
    },
    "xdc": {
        "chain_id": 50,
        "name": "XDC Mainnet",
        "currency": "XDC",
        "rpc_urls": ["https://rpc.ankr.com/xdc"],
        "timeout": 60,
    },
}

# Chain ID to name mapping
CHAIN_ID_TO_NAME: dict[int, str] = {
    config["chain_id"]: name for name, config in CHAINS.items()
}

DEFAULT_CHAIN = "hardhat"

# Type-4 transaction defaults
DEFAULT_GAS_LIMIT: int = 500_000
DEFAULT_PRIORITY_FEE_WEI: int = 2_000_000_000

# Receipt polling
RECEIPT_TIMEOUT: int = 60  # seconds
RECEIPT_POLL_INTERVAL: float = 1.0  # seconds


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_chain_config(chain: str | int | None = None) -> dict[str, Any]:
    """Get configuration for a specific chain.

    Args:
        chain: Chain name (e.g., 'hardhat', 'apothem') or chain ID.
               If None, uses CHAIN environment variable or defaults to 'hardhat'.

    Returns:
        Chain configuration dictionary.

    Raises:
        ValueError: If chain is not supported.
    """
    if chain is None:
        chain = os.getenv("CHAIN", DEFAULT_CHAIN).lower()

    if isinstance(chain, int):
        name = CHAIN_ID_TO_NAME.get(chain)
        if name is None:
            raise ValueError(f"Unsupported chain ID: {chain}")
        chain = name

    chain = chain.lower()
    if chain not in CHAINS:
        raise ValueError(f"Unsupported chain: {chain}. Supported: {list(CHAINS.keys())}")

    return CHAINS[chain]


def get_rpc_url(chain: str | int | None = None) -> str:
    """Get the primary RPC URL for a chain.

    Uses RPC_URL environment variable if set, otherwise returns first default.
    """
    env_rpc = os.getenv("RPC_URL")
    if env_rpc:
        return env_rpc

    config = get_chain_config(chain)
    return config["rpc_urls"][0]


def get_chain_id(chain: str | None = None) -> int:
    """Get the chain ID for a chain name."""
    config = get_chain_config(chain)
    return config["chain_id"]


def get_web3(chain: str | int | None = None):
    """Get a Web3 instance connected to the configured RPC URL."""
    from web3 import Web3
    config = get_chain_config(chain)
    rpc_url = get_rpc_url(chain)
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": config["timeout"]}))


def get_gas_settings(chain_id: int) -> dict[str, int | None]:
    """Gas limit and fixed gas price for a chain ID.

    Chains without fixed settings (or unknown to the table) get
    DEFAULT_GAS_LIMIT and no gas price, meaning fees follow the base fee.
    """
    config = CHAINS.get(CHAIN_ID_TO_NAME.get(chain_id, ""), {})
    return {
        "gas": config.get("gas", DEFAULT_GAS_LIMIT),
        "gas_price": config.get("gas_price"),
    }
