"""
Error types for GHPC Mod Manager.

Internal components raise these; the public ``ModManager`` and
``TranslationManager`` operations catch them, log them and report a
``(success, message)`` pair instead. Missing dependencies and conflicts are
advisory results (see ``dependency_resolver``), not exceptions.
"""

from __future__ import annotations


class ModManagerError(Exception):
    """Base class for every error raised inside the mod manager core."""


class ConfigurationError(ModManagerError):
    """Game root not configured, or settings content is invalid."""


class IOFailure(ModManagerError):
    """A file could not be moved, copied or deleted."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class ManifestCorrupt(ModManagerError):
    """A JSON manifest could not be parsed."""


class BackupNotFound(ModManagerError):
    """An operation referenced a backup folder that does not exist."""


class NetworkFailure(ModManagerError):
    """The network provider failed to list releases or download an asset."""

    def __init__(self, message: str, status_code: int = 0, url: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class AssetNotFound(ModManagerError):
    """No release with the requested tag, or no asset matching the keyword."""
