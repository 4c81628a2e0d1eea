"""
bizbox - generative work orchestration for Business in a Box runs.

The package exposes the catalog, the execution engine, the side-effect
registry and the delivery packager, plus the CLI and HTTP entrypoints.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bizbox-engine")
except PackageNotFoundError:  # pragma: no cover - fallback for source checkouts
    __version__ = "0.0.0"

__all__ = ["__version__"]
