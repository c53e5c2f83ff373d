"""Decompression filter for gzip-encoded response bodies."""

from __future__ import annotations

import zlib
from typing import AsyncIterator, Iterable, Mapping

from yaquest.errors import DecompressionError

# 16 + MAX_WBITS selects the gzip container (header + trailer) in zlib
_GZIP_WBITS = 16 + zlib.MAX_WBITS


def is_gzipped(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> bool:
    """True if the Content-Encoding header is exactly 'gzip' (case-insensitive, trimmed)."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    for name, value in items:
        if name.lower() == "content-encoding":
            return isinstance(value, str) and value.strip().lower() == "gzip"
    return False


class GzipDecoder:
    """Incremental gzip inflater.

    Usage:
        decoder = GzipDecoder()
        for chunk in chunks:
            out.append(decoder.feed(chunk))
        out.append(decoder.finish())
    """

    def __init__(self) -> None:
        self._inflater = zlib.decompressobj(_GZIP_WBITS)
        self._received = 0

    def feed(self, chunk: bytes) -> bytes:
        """Inflate one chunk. Raises DecompressionError on corrupt input.

        A gzip body may hold several members back to back; each member that
        ends starts a fresh inflater for the bytes that follow it.
        """
        if not chunk:
            return b""
        self._received += len(chunk)
        out: list[bytes] = []
        data = chunk
        try:
            while data:
                if self._inflater.eof:
                    self._inflater = zlib.decompressobj(_GZIP_WBITS)
                out.append(self._inflater.decompress(data))
                data = self._inflater.unused_data if self._inflater.eof else b""
        except zlib.error as e:
            raise DecompressionError(f"corrupt gzip stream: {e}", cause=e) from e
        return b"".join(out)

    def finish(self) -> bytes:
        """Flush remaining output. Raises DecompressionError if the stream was truncated.

        A stream that delivered no bytes at all decodes to nothing.
        """
        if self._received == 0:
            return b""
        try:
            tail = self._inflater.flush()
        except zlib.error as e:
            raise DecompressionError(f"corrupt gzip stream: {e}", cause=e) from e
        if not self._inflater.eof:
            raise DecompressionError("corrupt gzip stream: unexpected end of file")
        return tail


async def gunzip(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Interpose gzip inflation on an async byte stream."""
    decoder = GzipDecoder()
    async for chunk in chunks:
        out = decoder.feed(chunk)
        if out:
            yield out
    tail = decoder.finish()
    if tail:
        yield tail


def decode_stream(
    chunks: AsyncIterator[bytes],
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> AsyncIterator[bytes]:
    """Wrap chunks with gzip inflation when the headers advertise it, else pass through."""
    if is_gzipped(headers):
        return gunzip(chunks)
    return chunks
