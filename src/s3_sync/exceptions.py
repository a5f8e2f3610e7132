# src/s3_sync/exceptions.py
"""Custom exceptions for the s3-sync application."""


class S3SyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(S3SyncError):
    """Raised for configuration-related issues."""

    pass


class RemoteError(S3SyncError):
    """Raised when a call to the object store fails."""

    pass


class TransferError(RemoteError):
    """Raised when a single create, update or delete fails."""

    pass


class EnumerationError(S3SyncError):
    """Raised when the local or remote file set cannot be enumerated.

    Enumeration failures are fatal: the run is aborted before any remote
    mutation takes place.
    """

    pass


class LocalEnumerationError(EnumerationError, IOError):
    """Raised when the build directory is missing or unreadable."""

    pass


class RemoteListingError(EnumerationError, RemoteError):
    """Raised when the bucket listing fails (network, auth, missing bucket)."""

    pass
