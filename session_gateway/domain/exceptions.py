"""Domain-specific exceptions for the Session Gateway.

Exception hierarchy:
- DomainError (base)
  - InvalidSessionIdError
  - SessionNotFoundError
  - StorageIOError
  - RelayDeliveryFailure
  - SendFailure

Storage and relay errors never reach callers of the public API; they are
caught at the component that raised them and logged. Connection closes are
not errors: the supervisor resolves them to a ``CloseOutcome``. Only
InvalidSessionIdError, SessionNotFoundError and SendFailure surface to callers.
"""


class DomainError(Exception):
    """Base exception for domain layer errors."""

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message
            context: Additional context about the error
        """
        self.message = message
        self.context = context or {}
        super().__init__(message)


class InvalidSessionIdError(DomainError):
    """Raised when a session identity is empty or not filesystem-path-safe."""

    pass


class SessionNotFoundError(DomainError):
    """Raised when an operation targets a session that is not registered."""

    pass


class StorageIOError(DomainError):
    """Raised when credentials or chat store files cannot be read or written.

    Always non-fatal: callers log it and continue with in-memory state.
    """

    pass


class RelayDeliveryFailure(DomainError):
    """Raised when a webhook or device-status POST fails.

    Context should include:
        - url: Target URL
        - status_code: HTTP status if a response was received
    """

    pass


class SendFailure(DomainError):
    """Opaque failure of an outbound message send.

    Carries no reason from the wrapped transport; callers must not
    rely on a cause being available.
    """

    def __init__(self) -> None:
        super().__init__("Message could not be sent")
