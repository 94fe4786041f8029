"""
Exception hierarchy for the media catalog scanner.

Only the configuration error is fatal to a scan; everything else is caught
at the level that owns it and recorded in the scan status.
"""


class MediaCatalogError(Exception):
    """Base exception for all media catalog errors."""
    pass


class ConfigurationError(MediaCatalogError):
    """Raised when required configuration (such as the share path) is missing."""
    pass


class StorageError(MediaCatalogError):
    """Raised when the storage provider cannot list or read a path."""
    pass


class ClassificationError(MediaCatalogError):
    """Raised when a raw file cannot be turned into a catalog item."""
    pass


class ResolutionError(MediaCatalogError):
    """Raised by a scheduled resolution run that should be retried."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ScanCancelled(MediaCatalogError):
    """Raised at a cancellation checkpoint after cancel() was requested."""
    pass
