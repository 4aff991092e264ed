# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Compression - Streaming codecs for backup artifacts.

Supported codecs:
1. GZIP (.gz) via zlib
2. BROTLI (.br) via brotli
3. ZSTD (.zst) via zstandard

Decompression runs chunk by chunk in a thread pool so multi-gigabyte
dumps never sit in memory.
"""

import asyncio
import zlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import brotli
import structlog
import zstandard as zstd

from dbrestore.config import CompressionType
from dbrestore.exceptions import CompressionError

logger = structlog.get_logger()

# Thread pool for CPU-bound codec work
_executor = ThreadPoolExecutor(max_workers=4)

EXTENSIONS = {
    CompressionType.GZIP: ".gz",
    CompressionType.BROTLI: ".br",
    CompressionType.ZSTD: ".zst",
}

DEFAULT_CHUNK_SIZE = 64 * 1024

_CODEC_ERRORS = (zlib.error, brotli.error, zstd.ZstdError)


class _GzipDecoder:
    def __init__(self):
        self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)

    def feed(self, data: bytes) -> bytes:
        return self._obj.decompress(data)

    def finish(self) -> bytes:
        tail = self._obj.flush()
        if not self._obj.eof:
            raise CompressionError("Truncated gzip stream")
        return tail


class _BrotliDecoder:
    def __init__(self):
        self._obj = brotli.Decompressor()

    def feed(self, data: bytes) -> bytes:
        return self._obj.process(data)

    def finish(self) -> bytes:
        if not self._obj.is_finished():
            raise CompressionError("Truncated brotli stream")
        return b""


class _ZstdDecoder:
    def __init__(self):
        self._obj = zstd.ZstdDecompressor().decompressobj()

    def feed(self, data: bytes) -> bytes:
        return self._obj.decompress(data)

    def finish(self) -> bytes:
        return self._obj.flush()


class _GzipEncoder:
    def __init__(self):
        self._obj = zlib.compressobj(wbits=16 + zlib.MAX_WBITS)

    def feed(self, data: bytes) -> bytes:
        return self._obj.compress(data)

    def finish(self) -> bytes:
        return self._obj.flush()


class _BrotliEncoder:
    def __init__(self):
        self._obj = brotli.Compressor()

    def feed(self, data: bytes) -> bytes:
        return self._obj.process(data)

    def finish(self) -> bytes:
        return self._obj.finish()


class _ZstdEncoder:
    def __init__(self):
        self._obj = zstd.ZstdCompressor(level=3).compressobj()

    def feed(self, data: bytes) -> bytes:
        return self._obj.compress(data)

    def finish(self) -> bytes:
        return self._obj.flush()


_DECODERS = {
    CompressionType.GZIP: _GzipDecoder,
    CompressionType.BROTLI: _BrotliDecoder,
    CompressionType.ZSTD: _ZstdDecoder,
}

_ENCODERS = {
    CompressionType.GZIP: _GzipEncoder,
    CompressionType.BROTLI: _BrotliEncoder,
    CompressionType.ZSTD: _ZstdEncoder,
}


def parse_compression(value: str | None) -> CompressionType:
    """
    Parse a sidecar compression value (case-insensitive).

    Raises:
        CompressionError: If the algorithm is unknown
    """
    if not value:
        return CompressionType.NONE
    try:
        return CompressionType(str(value).upper())
    except ValueError as e:
        raise CompressionError(f"Unsupported compression algorithm: {value}") from e


def compression_from_extension(filename: str) -> CompressionType:
    """
    Guess compression from a file name, ignoring a trailing .enc.

    e.g. "db.sql.gz.enc" -> GZIP
    """
    name = filename.lower()
    if name.endswith(".enc"):
        name = name[: -len(".enc")]
    for compression, ext in EXTENSIONS.items():
        if name.endswith(ext):
            return compression
    return CompressionType.NONE


def strip_extension(filename: str, compression: CompressionType) -> str:
    """File name with the codec's extension removed, if present."""
    ext = EXTENSIONS.get(compression)
    if ext and filename.lower().endswith(ext):
        return filename[: -len(ext)]
    return filename


def get_decoder(compression: CompressionType):
    """Incremental decoder for a codec, or None for NONE."""
    factory = _DECODERS.get(compression)
    return factory() if factory else None


def get_encoder(compression: CompressionType):
    """Incremental encoder for a codec, or None for NONE."""
    factory = _ENCODERS.get(compression)
    return factory() if factory else None


def probe_decompress(sample: bytes, compression: CompressionType) -> bool:
    """
    Whether a byte prefix starts a valid stream for the codec.

    Accepts when decoding the prefix yields at least one byte without
    error. The stream is not finished, so truncation is not an error.
    """
    decoder = get_decoder(compression)
    if decoder is None:
        return False
    try:
        return len(decoder.feed(sample)) > 0
    except _CODEC_ERRORS:
        return False


async def decompress_file(
    source: Path,
    destination: Path,
    compression: CompressionType,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Stream-decompress source into destination.

    Returns:
        Number of bytes written

    Raises:
        CompressionError: If the stream is corrupt or truncated
    """
    if compression == CompressionType.NONE:
        raise CompressionError("decompress_file called for an uncompressed file")

    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor,
        _transcode_sync,
        Path(source),
        Path(destination),
        get_decoder(compression),
        chunk_size,
    )


async def compress_file(
    source: Path,
    destination: Path,
    compression: CompressionType,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Stream-compress source into destination. Returns bytes written."""
    if compression == CompressionType.NONE:
        raise CompressionError("compress_file called without a codec")

    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor,
        _transcode_sync,
        Path(source),
        Path(destination),
        get_encoder(compression),
        chunk_size,
    )


def _transcode_sync(source: Path, destination: Path, codec, chunk_size: int) -> int:
    """Run a file through an incremental codec."""
    written = 0
    try:
        with open(source, "rb") as src, open(destination, "wb") as dst:
            while chunk := src.read(chunk_size):
                out = codec.feed(chunk)
                dst.write(out)
                written += len(out)
            tail = codec.finish()
            dst.write(tail)
            written += len(tail)
        return written

    except _CODEC_ERRORS as e:
        destination.unlink(missing_ok=True)
        raise CompressionError(
            f"Decompression failed: {e}", details={"file": source.name}
        ) from e
    except CompressionError:
        destination.unlink(missing_ok=True)
        raise
