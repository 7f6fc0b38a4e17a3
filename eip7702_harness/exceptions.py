"""
Exceptions raised by the EIP-7702 harness.

Invalid authorization tuples are *not* errors: the delegation model reports
them as skipped outcomes. Only caller bugs and signing failures raise.
"""


class HarnessError(Exception):
    """Base exception for harness errors"""
    pass


class SigningError(HarnessError):
    """The authorization could not be signed with the given key material."""
    pass


class MalformedInputError(HarnessError, ValueError):
    """An authorization list, tuple, address or account code is structurally invalid."""
    pass


class TransactionTimeoutError(HarnessError):
    """A submitted transaction was not mined before the receipt timeout."""
    pass


class InvalidSignatureError(HarnessError):
    """The authority could not be recovered from an authorization signature."""
    pass
