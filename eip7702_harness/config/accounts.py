"""
Signer key loading.

Keys come from PRIVATE_KEY and/or a comma-separated PRIVATE_KEYS, read from
the environment after loading a local .env file. Duplicates are dropped and
the first occurrence keeps its position, so index 0 is always PRIVATE_KEY
when it is set.
"""

import os

from dotenv import load_dotenv
from eth_account import Account
from eth_account.signers.local import LocalAccount

load_dotenv()


def load_private_keys() -> list[str]:
    """Return configured private keys in order, without duplicates."""
    keys = []
    single = os.getenv("PRIVATE_KEY", "").strip()
    if single:
        keys.append(single)
    for key in os.getenv("PRIVATE_KEYS", "").split(","):
        key = key.strip()
        if key:
            keys.append(key)
    return list(dict.fromkeys(keys))


def load_accounts() -> list[LocalAccount]:
    """Return a LocalAccount for every configured key."""
    return [Account.from_key(key) for key in load_private_keys()]
