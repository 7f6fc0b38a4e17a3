"""
EIP-7702 delegation harness.

Builds signed authorization tuples and predicts the account code a chain
ends up with after processing them.
"""

from eip7702_harness.exceptions import (
    HarnessError,
    MalformedInputError,
    SigningError,
    TransactionTimeoutError,
)
from eip7702_harness.helpers import (
    AccountCodeState,
    AuthorizationTuple,
    DelegationStateModel,
    SkipReason,
    apply_authorizations,
    authorization_nonce,
    build_authorization,
    delegation_marker,
    parse_delegation_marker,
)

__version__ = "0.1.0"

__all__ = [
    'HarnessError',
    'MalformedInputError',
    'SigningError',
    'TransactionTimeoutError',
    'AccountCodeState',
    'AuthorizationTuple',
    'DelegationStateModel',
    'SkipReason',
    'apply_authorizations',
    'authorization_nonce',
    'build_authorization',
    'delegation_marker',
    'parse_delegation_marker',
]
