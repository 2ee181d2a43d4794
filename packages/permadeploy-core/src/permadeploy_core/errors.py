"""Exception hierarchy for the deployment pipeline.

Every error carries enough context to be shown to the user as-is. The
``retryable`` flag is what the retry classifier consults first.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for all deployment failures."""

    retryable: bool = False

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class InputError(DeployError):
    """Bad input detected before any network call (missing root, empty tree)."""


class VersionConflictError(DeployError):
    """The requested version tag already exists locally or on-chain."""

    def __init__(self, version: str, suggestion: str, where: str = "on-chain") -> None:
        self.version = version
        self.suggestion = suggestion
        self.where = where
        super().__init__(
            f'Version "{version}" already exists {where}. '
            f'Use a different version tag (e.g. "{suggestion}").'
        )


class InsufficientFundsError(DeployError):
    """Not enough spendable value at the funding address."""

    def __init__(self, address: str, required: int, available: int) -> None:
        self.address = address
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient funds at {address}: need {required} sats, "
            f"only {available} available. Fund this address first."
        )


class TransientNetworkError(DeployError):
    """A network failure that is worth retrying."""

    retryable = True


class SpentCarrierError(DeployError):
    """A carrier was already spent by another transaction. Never retried."""


class RetryExhaustedError(DeployError):
    """A retryable operation failed on every attempt."""

    def __init__(self, operation: str, attempts: int, cause: Exception) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempts: {cause}", cause)


class AuthorityError(DeployError):
    """The signing key does not control the carrier being spent."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Signing key mismatch: carrier is controlled by {expected}, "
            f"but the signing key address is {actual}. "
            "Use the same key as the original deployment."
        )


class IntegrityError(DeployError):
    """Malformed record, manifest or metadata where a valid one is required."""
