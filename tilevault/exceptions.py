"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class TileVaultError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(TileVaultError):
    """Raised for issues related to configuration loading or validation."""


class RegionNotFoundError(TileVaultError):
    """Raised when a region code is not present in the region catalogue."""


class NetworkError(TileVaultError):
    """
    Raised when a transfer fails on the network side: connection errors,
    non-2xx responses, or a body shorter than its declared length.
    """

    def __init__(self, url: str, message: str, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class StorageError(TileVaultError):
    """Raised when the blob store or metadata table cannot be written."""


class StorageQuotaExceeded(StorageError):
    """Raised when the blob store runs out of disk or configured quota."""


class TransferCancelledError(TileVaultError):
    """Raised to awaiters of a transfer that was cancelled by the user."""
