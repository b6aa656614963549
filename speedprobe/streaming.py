"""Server side of the throughput test: synthetic download stream and upload sink."""

from __future__ import annotations

import logging
from typing import BinaryIO, Iterator, Optional

from .config import StreamingConfig

LOGGER = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024

# Content is irrelevant to the test, only needs to be cheap and deterministic.
_PATTERN = bytes((i * 17 + 31) % 256 for i in range(65536))


def pattern_chunk(size: int) -> bytes:
    """Return ``size`` bytes of the synthetic payload pattern."""
    repeats, remainder = divmod(size, len(_PATTERN))
    return _PATTERN * repeats + _PATTERN[:remainder]


def resolve_download_mb(raw: Optional[str], streaming: StreamingConfig) -> int:
    """Turn the ``size`` query parameter into a clamped size in MB.

    Missing, unparsable and non-positive values fall back to the configured
    default; everything ends up inside ``[1, download_cap_mb]``.
    """
    requested: Optional[int] = None
    if raw:
        try:
            requested = int(raw)
        except ValueError:
            LOGGER.info("Ignoring unparsable download size %r", raw)

    if requested is None or requested <= 0:
        requested = streaming.default_download_mb

    cap = streaming.download_cap_mb
    if requested > cap:
        LOGGER.info("Client requested %dMB, capped download size to %dMB", requested, cap)
        return cap
    return max(1, requested)


def stream_download(total_bytes: int, chunk_size: int) -> Iterator[bytes]:
    """Yield ``total_bytes`` in ``chunk_size`` pieces.

    Each yielded piece is handed to the WSGI server separately, which writes
    and flushes it before asking for the next one. If the client goes away
    the server closes the generator; that is logged and nothing else.
    """
    chunk = pattern_chunk(chunk_size)
    bytes_sent = 0
    LOGGER.info("Starting download stream of %d bytes (%dMB)", total_bytes, total_bytes // MEGABYTE)
    try:
        while bytes_sent < total_bytes:
            size = min(chunk_size, total_bytes - bytes_sent)
            yield chunk if size == chunk_size else chunk[:size]
            bytes_sent += size
    except GeneratorExit:
        LOGGER.warning("Download stream aborted after %d of %d bytes", bytes_sent, total_bytes)
        raise
    LOGGER.info("Download stream finished. Total bytes sent: %d", bytes_sent)


def drain_upload(stream: BinaryIO, block_size: int) -> int:
    """Read ``stream`` to the end, discarding the data, and return the byte count."""
    bytes_received = 0
    while True:
        block = stream.read(block_size)
        if not block:
            break
        bytes_received += len(block)
    LOGGER.info("Upload finished. Total bytes received: %d", bytes_received)
    return bytes_received
