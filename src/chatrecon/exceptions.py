class ChatReconError(Exception):
    """Base exception for all expected chatrecon errors."""

    message: str
    exit_code: int

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class ConfigurationError(ChatReconError):
    """Configuration related errors (env vars, settings)."""


class MalformedPartError(ChatReconError, ValueError):
    """A part whose type-mandatory fields are missing or invalid."""


class PivotNotFoundError(ChatReconError):
    """The message an operation is anchored on is not in the log."""


class NoPrecedingMessageError(ChatReconError):
    """Reload was requested on the first message, or on an unknown one."""


class InvalidPivotRoleError(ChatReconError):
    """The message before the reload target is not a user message."""


class ReconciliationInProgressError(ChatReconError):
    """Another edit or reload is still running for this conversation."""


class TransportFailure(ChatReconError):
    """Network or server errors while exchanging with the chat endpoint."""


class TruncationFailure(ChatReconError):
    """The durable store was unreachable or rejected a truncation."""


class StoreError(ChatReconError):
    """Durable store errors outside of truncation (append, load)."""
