"""Exception hierarchy shared by the engine, side effects and packaging."""
from __future__ import annotations


class BizboxError(Exception):
    """Base class for all errors raised by the package."""


class ConfigurationError(BizboxError):
    """Catalog or plan is unusable; raised before any item executes."""


class GenerationError(BizboxError):
    """The generative service failed or returned an unusable response."""


class SideEffectError(BizboxError):
    """A post-processing handler (asset generation, deployment) failed."""


class PackagingError(BizboxError):
    """A delivery package could not be built, uploaded or signed."""


class StorageError(BizboxError):
    """The content store rejected an upload or read."""


__all__ = [
    "BizboxError",
    "ConfigurationError",
    "GenerationError",
    "SideEffectError",
    "PackagingError",
    "StorageError",
]
