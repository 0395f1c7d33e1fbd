"""Tests for version parsing and the capability probe."""

import asyncio

import pytest

from memtui.capability import CapabilityDetector, is_version_supported, parse_version
from memtui.errors import DetectionFailedError, UnsupportedVersionError

from .fakes import FakeServer


def _stats_server(version_line: str) -> FakeServer:
    return FakeServer(lambda cmd: f"STAT pid 1\r\n{version_line}END\r\n".encode())


@pytest.mark.parametrize(
    "version,expected",
    [
        ("1.4.31", (1, 4, 31)),
        ("1.6.21-beta", (1, 6, 21)),
        ("1.5", (1, 5, 0)),
        (" 1.4.30 ", (1, 4, 30)),
    ],
)
def test_parse_version(version, expected):
    assert parse_version(version) == expected


@pytest.mark.parametrize("version", ["", "1", "one.two", "1.x.3"])
def test_parse_version_rejects_garbage(version):
    with pytest.raises(ValueError):
        parse_version(version)


def test_is_version_supported_boundaries():
    assert not is_version_supported("1.4.30")
    assert is_version_supported("1.4.31")
    assert is_version_supported("1.5")
    assert is_version_supported("2.0.0-rc1")
    assert not is_version_supported("nonsense")


def test_verify_rejects_old_server():
    async def run():
        async with _stats_server("STAT version 1.4.30\r\n") as server:
            await CapabilityDetector().verify(server.address)

    with pytest.raises(UnsupportedVersionError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.detected == "1.4.30"
    assert excinfo.value.minimum == "1.4.31"


def test_verify_accepts_supported_server():
    async def run():
        async with _stats_server("STAT version 1.4.31\r\n") as server:
            return await CapabilityDetector().verify(server.address), server.commands

    caps, commands = asyncio.run(run())
    assert caps.version == "1.4.31"
    assert caps.supports_metadump is True
    assert commands == ["stats"]


def test_detect_reports_unsupported_without_raising():
    async def run():
        async with _stats_server("STAT version 1.2.8\r\n") as server:
            return await CapabilityDetector().detect(server.address)

    caps = asyncio.run(run())
    assert caps.supports_metadump is False


def test_detect_without_version_line_fails():
    async def run():
        async with _stats_server("") as server:
            await CapabilityDetector().detect(server.address)

    with pytest.raises(DetectionFailedError):
        asyncio.run(run())
