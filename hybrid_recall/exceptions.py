"""Custom exceptions for hybrid-recall."""


class HybridRecallError(Exception):
    """Base exception for hybrid-recall."""

    pass


class ConfigurationError(HybridRecallError):
    """Configuration-related errors."""

    pass


class InitializationError(HybridRecallError):
    """The memory store could not be opened or built."""

    pass


class StorageIOError(HybridRecallError):
    """Key-value backend read/write failed."""

    def __init__(self, operation: str, store_name: str, key: str, message: str):
        super().__init__(f"Storage {operation} failed for {store_name}/{key}: {message}")
        self.operation = operation
        self.store_name = store_name
        self.key = key


class CorruptPersistedStateError(HybridRecallError):
    """Persisted blob cannot be deserialized or uses an incompatible schema."""

    def __init__(self, reason: str):
        super().__init__(f"Persisted memory store unusable: {reason}")
        self.reason = reason
