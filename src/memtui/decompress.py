"""Transparent decompression of stored values by magic-byte sniffing."""

from __future__ import annotations

import gzip
import zlib
from typing import Optional

import zstandard

from .errors import DecompressionFailedError

GZIP_MAGIC = b"\x1f\x8b"
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
# 0x78 followed by the FLEVEL byte for no/fast/default/best compression.
ZLIB_HEADERS = (b"\x78\x01", b"\x78\x5e", b"\x78\x9c", b"\x78\xda")


def is_gzip(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def is_zlib(data: bytes) -> bool:
    return data[:2] in ZLIB_HEADERS


def is_zstd(data: bytes) -> bool:
    return data[:4] == ZSTD_MAGIC


def detect_compression(data: bytes) -> Optional[str]:
    """Return ``"gzip"``, ``"zstd"``, ``"zlib"`` or None."""
    if is_gzip(data):
        return "gzip"
    if is_zstd(data):
        return "zstd"
    if is_zlib(data):
        return "zlib"
    return None


def _zstd_decompress(data: bytes) -> bytes:
    """Decode every concatenated frame; anything after the last frame is an error."""
    dctx = zstandard.ZstdDecompressor()
    chunks = []
    remaining = data
    while remaining:
        if not is_zstd(remaining):
            raise zstandard.ZstdError(f"{len(remaining)} bytes of trailing data after zstd frame")
        dobj = dctx.decompressobj()
        chunks.append(dobj.decompress(remaining))
        if not dobj.eof:
            raise zstandard.ZstdError("truncated zstd frame")
        remaining = dobj.unused_data
    return b"".join(chunks)


def decompress(data: bytes) -> bytes:
    """Decompress ``data`` when it carries a known magic, else return it unchanged.

    Raises ``DecompressionFailedError`` when the magic matched but the body
    could not be decoded; callers may fall back to showing the raw bytes.
    """
    fmt = detect_compression(data)
    if fmt is None:
        return data
    try:
        if fmt == "gzip":
            return gzip.decompress(data)
        if fmt == "zstd":
            return _zstd_decompress(data)
        return zlib.decompress(data)
    except (OSError, EOFError, zlib.error, zstandard.ZstdError) as exc:
        raise DecompressionFailedError(fmt, exc) from exc
