"""Typed errors raised by the connection engine.

Rules and negotiator errors are raised before the store is touched; only
the store raises conflict, storage and timeout errors.
"""


class ConnectionServiceError(Exception):
    """Base exception for connection engine errors."""

    retryable = False


class ConnectionNotFoundError(ConnectionServiceError):
    """Unknown connection id."""

    pass


class ConnectionForbiddenError(ConnectionServiceError):
    """Caller is not a party, or not the party the action requires."""

    pass


class EntitlementRequiredError(ConnectionForbiddenError):
    """Caller's membership does not grant access (free quota exhausted)."""

    pass


class InvalidTransitionError(ConnectionServiceError):
    """Action is illegal for the connection's current status."""

    pass


class InvalidStateError(InvalidTransitionError):
    """Connection is in a status that no longer accepts thread writes."""

    pass


class ConnectionValidationError(ConnectionServiceError):
    """Missing or malformed input (empty text, unknown next-step type...)."""

    pass


class ConcurrencyConflictError(ConnectionServiceError):
    """Optimistic write lost the race on every allowed attempt."""

    retryable = True

    def __init__(self, connection_id, attempts: int):
        self.connection_id = connection_id
        self.attempts = attempts
        super().__init__(
            f"Connection {connection_id} changed concurrently ({attempts} attempts)"
        )


class StoreUnavailableError(ConnectionServiceError):
    """Underlying store failed or is unreachable."""

    retryable = True


class StoreTimeoutError(StoreUnavailableError):
    """Bounded wait on the store was exceeded."""

    retryable = True
