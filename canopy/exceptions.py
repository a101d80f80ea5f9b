"""Exceptions for the canopy package."""


class DatabaseError(Exception):
    """Base exception for all canopy errors."""

    pass


class ValidationError(DatabaseError, ValueError):
    """An argument was rejected before any backend call was made."""

    pass


class RegistrationNotFound(DatabaseError, LookupError):
    """No event registration matches the given callback.

    Built and logged by Reference.off(); never raised.
    """

    def __init__(self, path: str, event, callback):
        self.path = path
        self.event = event
        self.callback = callback
        super().__init__(
            f"Can't find specified callback to unsubscribe from "
            f"(path: \"{path}\", event: {event}, callback: {callback!r})"
        )


class BackendError(DatabaseError):
    """The storage backend failed to perform an operation."""

    pass


class DeliveryError(DatabaseError):
    """An event could not be delivered to a subscription handler."""

    def __init__(self, path: str, event: str, cause: Exception = None):
        self.path = path
        self.event = event
        self.cause = cause
        message = f"Error getting data for event {event} on path \"{path}\""
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class SerializationError(DatabaseError):
    """Failed to serialize or deserialize a value."""

    pass


class TransactionError(BackendError):
    """Transaction-related error."""

    pass
