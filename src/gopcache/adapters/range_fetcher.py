"""
Byte-range fetchers for HTTP(S) and local files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import unquote, urlparse

import requests

from gopcache.infra.exceptions import RangeFetchError

_logger = logging.getLogger(__name__)

# HEAD responses that carry a usable Content-Length
_SIZE_PROBE_OK = (200, 304)


class HttpRangeFetcher:
    """HEAD for the size, GET with a Range header for the bytes."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def probe_size(self, url: str) -> int:
        try:
            response = self._session.head(url, allow_redirects=True, timeout=self._timeout)
        except requests.RequestException as e:
            raise RangeFetchError(f"HEAD {url} failed: {e}", url=url) from e
        if response.status_code not in _SIZE_PROBE_OK:
            raise RangeFetchError(
                f"HEAD {url} returned {response.status_code}", url=url, status=response.status_code
            )
        length = response.headers.get("Content-Length")
        if length is None or not length.isdigit():
            raise RangeFetchError(
                f"HEAD {url} has no content length", url=url, status=response.status_code
            )
        _logger.debug("Probed %s: %s bytes", url, length)
        return int(length)

    def fetch_range(self, url: str, start: int, end: int) -> bytes:
        if end <= start:
            return b""
        headers = {"Range": f"bytes={start}-{end - 1}"}
        try:
            response = self._session.get(url, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise RangeFetchError(f"GET {url} failed: {e}", url=url, start=start, end=end) from e
        if response.status_code != 206:
            raise RangeFetchError(
                f"GET {url} bytes={start}-{end - 1} returned {response.status_code}",
                url=url,
                start=start,
                end=end,
                status=response.status_code,
            )
        data = response.content
        if len(data) != end - start:
            raise RangeFetchError(
                f"GET {url} returned {len(data)} bytes, expected {end - start}",
                url=url,
                start=start,
                end=end,
                status=response.status_code,
            )
        return data

    def close(self) -> None:
        self._session.close()


def _local_path(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(url)


class LocalFileFetcher:
    """Same contract as HttpRangeFetcher over local paths and file:// URLs."""

    def probe_size(self, url: str) -> int:
        path = _local_path(url)
        try:
            return path.stat().st_size
        except OSError as e:
            raise RangeFetchError(f"Cannot stat {path}: {e}", url=url) from e

    def fetch_range(self, url: str, start: int, end: int) -> bytes:
        if end <= start:
            return b""
        path = _local_path(url)
        try:
            with open(path, "rb") as f:
                f.seek(start)
                data = f.read(end - start)
        except OSError as e:
            raise RangeFetchError(f"Cannot read {path}: {e}", url=url, start=start, end=end) from e
        if len(data) != end - start:
            raise RangeFetchError(
                f"Short read from {path}: {len(data)} of {end - start} bytes",
                url=url,
                start=start,
                end=end,
            )
        return data


def fetcher_for(url: str, timeout: float = 30.0) -> HttpRangeFetcher | LocalFileFetcher:
    """Pick a fetcher by URL scheme."""
    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        return HttpRangeFetcher(timeout=timeout)
    if scheme in ("", "file") or os.path.isabs(url):
        return LocalFileFetcher()
    raise RangeFetchError(f"Unsupported URL scheme: {scheme}", url=url)
