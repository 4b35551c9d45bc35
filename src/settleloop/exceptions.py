"""Custom exceptions for SettleLoop."""


class SettleLoopError(Exception):
    """Base exception for all SettleLoop errors."""

    pass


class ConfigurationError(SettleLoopError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(SettleLoopError):
    """Raised when an expense or selection breaks a split invariant.

    The caller is expected to correct the input and resubmit.
    """

    pass


class NotFoundError(SettleLoopError):
    """Raised when a mission, member, expense, rule or bill pack id is unknown."""

    def __init__(self, kind: str, identifier: str, message: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind.capitalize()} {identifier} not found")


class ConservationError(SettleLoopError):
    """Raised when member balances no longer sum to zero.

    This is never a user error; it means a ledger computation is broken.
    """

    pass


class ConfigurationWarning(UserWarning):
    """A rule is configured in a way that needs a human to look at it.

    Logged and recorded for audit, never raised.
    """

    pass
