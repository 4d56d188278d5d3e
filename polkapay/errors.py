"""Exception hierarchy shared by the PolkaPay services."""

from __future__ import annotations


class PolkaPayError(RuntimeError):
    """Base class for SDK failures."""


class ChainConnectionError(PolkaPayError, ConnectionError):
    """Raised when the node transport cannot be created or reached."""


class SchemaNotRegisteredError(ChainConnectionError):
    """Raised when a typed surface is requested before schema registration."""


class NotInitializedError(PolkaPayError):
    """Raised when an operation needs a live connection handle and none exists."""


class QueryError(PolkaPayError):
    """Raised when a storage read fails for reasons other than absence."""


class FeeEstimationError(PolkaPayError):
    """Raised when the chain cannot price a transfer for the given sender."""


class SigningError(PolkaPayError):
    """Raised when key derivation or signing fails."""


class SubmissionError(PolkaPayError):
    """Raised when broadcasting fails or finality is never observed."""


class RetryExhaustedError(ChainConnectionError):
    """Raised when every connection attempt failed.

    Treat this as fatal for the session: no connection could be established.
    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Failed to initialize after {attempts} attempts: {detail}")
        self.attempts = attempts
        self.last_error = last_error
