"""
Custom exceptions for gopcache operations.

This module provides the exception classes raised while loading media
metadata, decoding GOPs and fetching byte ranges.
"""

from __future__ import annotations


class GopCacheError(Exception):
    """Base exception for all gopcache errors."""

    pass


class MetaLoadError(GopCacheError):
    """Raised when the size probe, demux or GOP indexing of a file fails.

    Terminal for the file-level cache entry until it is destroyed and rebuilt.
    """

    pass


class DecodeError(GopCacheError):
    """Raised when a single GOP fails to decode. Terminal for that GOP only."""

    def __init__(self, message: str, gop_index: int | None = None) -> None:
        super().__init__(message)
        self.gop_index = gop_index


class RangeFetchError(GopCacheError):
    """Raised when a byte range (or the size probe) cannot be fetched."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        start: int | None = None,
        end: int | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.start = start
        self.end = end
        self.status = status


class ContextClosedError(GopCacheError):
    """Raised when a request is submitted to a stopped execution context."""

    pass
