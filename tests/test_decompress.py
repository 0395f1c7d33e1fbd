"""Tests for magic sniffing and transparent decompression."""

import gzip
import zlib

import pytest
import zstandard

from memtui.decompress import decompress, detect_compression
from memtui.errors import DecompressionFailedError


def test_gzip_zlib_zstd_payloads_decompress():
    assert decompress(gzip.compress(b"hello")) == b"hello"
    assert decompress(zlib.compress(b"hello")) == b"hello"
    assert decompress(zstandard.ZstdCompressor().compress(b"hello")) == b"hello"


def test_zstd_frame_without_content_size():
    cctx = zstandard.ZstdCompressor(write_content_size=False)
    assert decompress(cctx.compress(b"hello" * 100)) == b"hello" * 100


def test_plain_and_empty_input_pass_through():
    assert decompress(b"hello") == b"hello"
    assert decompress(b"") == b""
    assert detect_compression(b"") is None


def test_detect_compression():
    assert detect_compression(gzip.compress(b"x")) == "gzip"
    assert detect_compression(zlib.compress(b"x", 9)) == "zlib"
    assert detect_compression(b"\x78\x01rest") == "zlib"
    assert detect_compression(b"\x28\xb5\x2f\xfdrest") == "zstd"
    assert detect_compression(b"\x78\x00") is None


@pytest.mark.parametrize(
    "payload,fmt",
    [
        (b"\x28\xb5\x2f\xfd" + b"\x00corrupt body", "zstd"),
        (b"\x1f\x8b\x08" + b"not gzip", "gzip"),
        (b"\x78\x9c" + b"not zlib", "zlib"),
    ],
)
def test_corrupt_payload_raises(payload, fmt):
    with pytest.raises(DecompressionFailedError) as excinfo:
        decompress(payload)
    assert excinfo.value.format == fmt


def test_truncated_zstd_frame_raises():
    frame = zstandard.ZstdCompressor(write_content_size=False).compress(b"hello" * 100)
    with pytest.raises(DecompressionFailedError):
        decompress(frame[:-6])


def test_concatenated_zstd_frames_decode_fully():
    cctx = zstandard.ZstdCompressor()
    assert decompress(cctx.compress(b"hello ") + cctx.compress(b"world")) == b"hello world"

    streamed = zstandard.ZstdCompressor(write_content_size=False)
    assert decompress(streamed.compress(b"a" * 50) + cctx.compress(b"b")) == b"a" * 50 + b"b"


def test_garbage_after_zstd_frame_raises():
    frame = zstandard.ZstdCompressor().compress(b"hello")
    with pytest.raises(DecompressionFailedError) as excinfo:
        decompress(frame + b"\xff\xfe garbage")
    assert excinfo.value.format == "zstd"
