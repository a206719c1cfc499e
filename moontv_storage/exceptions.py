"""
Defines custom exceptions for the storage layer to allow for more specific error handling.
"""


class MoonStorageError(Exception):
    """Base exception for all storage-layer errors."""


class StorageUnavailableError(MoonStorageError):
    """Raised when the backing store stays unreachable after all retries."""


class CorruptRecordError(MoonStorageError):
    """
    Raised when a stored value cannot be parsed into the expected shape.
    """

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupt record at '{key}': {reason}")
        self.key = key
        self.reason = reason


class UnsupportedOperationError(MoonStorageError):
    """Raised by a backend that does not implement an optional operation."""


class InvalidUsernameError(MoonStorageError, ValueError):
    """Raised when a per-user operation is called with an empty username."""


class ConfigurationError(MoonStorageError):
    """Raised for issues related to configuration loading or validation."""


class ImportFormatError(MoonStorageError):
    """Raised when an admin-config import payload has an invalid envelope."""


class ConfigFileError(MoonStorageError):
    """Raised when a ConfigFile payload is not a string holding valid JSON."""
