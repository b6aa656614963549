"""Client side of the download and upload throughput tests."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterator, Optional

import requests

from ..errors import TransportError, ZeroBytesError
from ..streaming import MEGABYTE, pattern_chunk

LOGGER = logging.getLogger(__name__)

READ_CHUNK = 65536


@dataclass
class ThroughputResult:
    bytes: int
    duration_seconds: float

    @property
    def speed_mbps(self) -> Optional[float]:
        if self.duration_seconds <= 0:
            return None
        return (self.bytes * 8) / (self.duration_seconds * MEGABYTE)


def clamp_size_mb(requested: int, cap_mb: int) -> int:
    return min(max(int(requested), 1), max(cap_mb, 1))


class SyntheticBody:
    """Upload body of a fixed length, generated chunk by chunk.

    Having ``__len__`` lets requests send a ``Content-Length`` header
    instead of falling back to chunked encoding.
    """

    def __init__(self, total_bytes: int, chunk_size: int = READ_CHUNK):
        self.total_bytes = total_bytes
        self.chunk_size = chunk_size

    def __len__(self) -> int:
        return self.total_bytes

    def __iter__(self) -> Iterator[bytes]:
        chunk = pattern_chunk(self.chunk_size)
        remaining = self.total_bytes
        while remaining > 0:
            size = min(self.chunk_size, remaining)
            yield chunk if size == self.chunk_size else chunk[:size]
            remaining -= size


class ThroughputClient:
    def __init__(self, session: requests.Session, base_url: str, max_size_mb: int = 100, timeout: float = 30.0):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.max_size_mb = max_size_mb
        self.timeout = timeout

    def download(self, size_mb: int) -> ThroughputResult:
        """Drain ``/download`` and time it from request to last byte."""
        size_mb = clamp_size_mb(size_mb, self.max_size_mb)
        bytes_received = 0
        start = time.perf_counter()
        try:
            with self.session.get(
                f"{self.base_url}/download",
                params={"size": size_mb},
                stream=True,
                timeout=self.timeout,
            ) as response:
                if not response.ok:
                    raise TransportError(f"HTTP error! status: {response.status_code}")
                for chunk in response.iter_content(chunk_size=READ_CHUNK):
                    bytes_received += len(chunk)
        except requests.RequestException as exc:
            raise TransportError(f"Download failed: {exc}") from exc
        elapsed = time.perf_counter() - start

        if bytes_received == 0:
            raise ZeroBytesError("Zero bytes received")

        result = ThroughputResult(bytes=bytes_received, duration_seconds=elapsed)
        LOGGER.info("Download: %d bytes in %.2fs", bytes_received, elapsed)
        return result

    def upload(self, size_mb: int) -> ThroughputResult:
        """POST ``size_mb`` of synthetic data to ``/upload`` and time the whole request."""
        size_mb = clamp_size_mb(size_mb, self.max_size_mb)
        body = SyntheticBody(size_mb * MEGABYTE)
        start = time.perf_counter()
        try:
            response = self.session.post(
                f"{self.base_url}/upload",
                data=body,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Upload failed: {exc}") from exc
        elapsed = time.perf_counter() - start

        if not response.ok:
            raise TransportError(f"HTTP error! status: {response.status_code}")

        LOGGER.info("Upload: %d bytes in %.2fs", len(body), elapsed)
        return ThroughputResult(bytes=len(body), duration_seconds=elapsed)
