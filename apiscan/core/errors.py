"""
ApiScan Error Taxonomy
=======================

Exception hierarchy shared by the cache, synchronizer, matcher and
collaborators.  Fatal errors propagate to the CLI, which prints the cause
chain; per-member failures are caught by the synchronizer and reported.

    ApiScanError
    ├── SourceUnreachable        (fatal: index fetch failed)
    │   └── IndexParseError      (fatal: index page has an unexpected shape)
    ├── DetailFetchFailed        (recoverable per member)
    ├── CorruptCache             (fatal on load, never downgraded to a rebuild)
    ├── CacheWriteFailed         (non-fatal, logged by the cache manager)
    ├── UnsupportedFormat        (sample is not a PE image)
    └── RenderError              (output could not be written)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ApiScanError(Exception):
    """Base class for every error raised by apiscan."""


class SourceUnreachable(ApiScanError):
    """The remote category index could not be fetched."""


class IndexParseError(SourceUnreachable):
    """The remote index was fetched but did not have the expected shape."""


class DetailFetchFailed(ApiScanError):
    """A single member's detail page could not be fetched or parsed.

    Attributes:
        name: The API name whose detail page failed.
        reason: Short human-readable cause.
    """

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        self.reason = reason
        message = f"failed to fetch details for {name}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class CorruptCache(ApiScanError):
    """The persisted cache exists but does not decode to a record store."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        self.path = path
        if path is not None:
            message = f"{message} ({path})"
        super().__init__(message)


class CacheWriteFailed(ApiScanError):
    """The record store could not be written to the cache directory."""

    def __init__(self, path: Path, reason: str = "") -> None:
        self.path = path
        super().__init__(f"could not write cache file {path}: {reason}")


class UnsupportedFormat(ApiScanError):
    """The sample is not a recognized executable format."""


class RenderError(ApiScanError):
    """Results could not be rendered to the requested destination."""
