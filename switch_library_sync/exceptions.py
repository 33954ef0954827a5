"""
Exception hierarchy for switch-library-sync.

All library errors derive from LibraryError so callers can catch broadly
or specifically depending on context.
"""


class LibraryError(Exception):
    """Base class for all switch-library-sync exceptions."""


class CatalogError(LibraryError):
    """Raised when a catalog document cannot be downloaded or parsed."""


class SettingsError(LibraryError):
    """Raised when the settings file cannot be read or holds bad values."""


class StateNotLoadedError(LibraryError):
    """Raised when a query runs before the catalog or library was loaded."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"{' and '.join(missing)} not loaded yet. "
            "Please scan the library / update the title database first."
        )


class OrganizeTemplateError(LibraryError):
    """Raised when the organize naming templates are unusable."""


class ScanError(LibraryError):
    """Raised for a folder that cannot be scanned; recorded as a skip entry."""
