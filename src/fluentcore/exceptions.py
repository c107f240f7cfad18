"""Exceptions raised by the learning engine."""


class FluentError(Exception):
    """Base class for engine errors."""


class TransientStorageError(FluentError):
    """A storage backend read or write failed and may succeed later."""


class StorageQuotaExceeded(TransientStorageError):
    """A write would push a storage namespace past its byte quota."""

    def __init__(self, namespace: str, used: int, quota: int):
        super().__init__(f"Namespace '{namespace}' would use {used} bytes (quota {quota})")
        self.namespace = namespace
        self.used = used
        self.quota = quota


class InvalidRecordState(FluentError, ValueError):
    """A stored record violates one of its invariants."""


class UnknownCommandError(FluentError, TypeError):
    """The engine was asked to dispatch something that is not a command."""
