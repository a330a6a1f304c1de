"""Core exception types for module-source."""


class ModuleSourceError(Exception):
    """Base exception for all module-source errors."""
    pass


class ResolutionError(ModuleSourceError):
    """Raised when a source reference is malformed or cannot be resolved."""
    pass


class ConfigError(ModuleSourceError):
    """Raised when the module configuration file cannot be loaded."""
    pass


class CacheInvalidationError(ModuleSourceError):
    """Raised when a download directory cannot be removed on forced update."""
    pass


class CacheReadError(ModuleSourceError):
    """Raised when the version marker exists but cannot be read."""
    pass


class FetchError(ModuleSourceError):
    """Raised when downloading a source, or one of its hooks, fails."""
    pass


class GetterError(FetchError):
    """Raised when a fetch backend cannot transfer a source."""
    pass


class PersistError(ModuleSourceError):
    """Raised when the version marker cannot be written after a fetch."""
    pass


class OverlayError(ModuleSourceError):
    """Raised when the working tree cannot be copied into the fetched tree."""
    pass


class HookError(ModuleSourceError):
    """Raised when a lifecycle hook exits with a non-zero status."""
    pass
