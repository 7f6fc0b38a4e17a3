"""
Authorization building and delegation-state reasoning for EIP-7702.
"""

from eip7702_harness.helpers.authorization import (
    SET_CODE_TX_MAGIC,
    ZERO_ADDRESS,
    AuthorizationTuple,
    authorization_digest,
    authorization_nonce,
    build_authorization,
    recover_authority,
)

from eip7702_harness.helpers.delegation import (
    EOA_DELEGATION_MARKER,
    PLAIN_EOA,
    AccountCodeState,
    DelegationResult,
    DelegationStateModel,
    SkipReason,
    TransactionFrame,
    TupleOutcome,
    apply_authorizations,
    delegation_marker,
    is_delegation_marker,
    parse_delegation_marker,
)

__all__ = [
    # Authorization
    'SET_CODE_TX_MAGIC',
    'ZERO_ADDRESS',
    'AuthorizationTuple',
    'authorization_digest',
    'authorization_nonce',
    'build_authorization',
    'recover_authority',

    # Delegation
    'EOA_DELEGATION_MARKER',
    'PLAIN_EOA',
    'AccountCodeState',
    'DelegationResult',
    'DelegationStateModel',
    'SkipReason',
    'TransactionFrame',
    'TupleOutcome',
    'apply_authorizations',
    'delegation_marker',
    'is_delegation_marker',
    'parse_delegation_marker',
]
