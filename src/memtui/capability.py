"""Server capability detection (version gate for ``lru_crawler metadump``)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import DetectionFailedError, UnsupportedVersionError
from .scope import CancelScope
from .stats import parse_stats_response
from .transport import raw_command

logger = logging.getLogger("memtui.capability")

MIN_REQUIRED_VERSION = "1.4.31"
MIN_METADUMP_VERSION = (1, 4, 31)
DEFAULT_CAPABILITY_TIMEOUT = 5.0


@dataclass(frozen=True)
class Capability:
    version: str
    supports_metadump: bool


def parse_version(version: str) -> tuple[int, int, int]:
    """Parse ``MAJOR.MINOR[.PATCH][-suffix]``; a missing patch reads as 0."""
    base = version.strip().split("-", 1)[0]
    parts = base.split(".")
    if len(parts) < 2:
        raise ValueError(f"invalid version format: {version}")
    try:
        major = int(parts[0])
        minor = int(parts[1])
        patch = int(parts[2]) if len(parts) >= 3 else 0
    except ValueError as exc:
        raise ValueError(f"invalid version format: {version}") from exc
    return major, minor, patch


def is_version_supported(version: str) -> bool:
    try:
        return parse_version(version) >= MIN_METADUMP_VERSION
    except ValueError:
        return False


class CapabilityDetector:
    """Probe a server with ``stats`` and decide whether metadump is available."""

    def __init__(self, timeout: float = DEFAULT_CAPABILITY_TIMEOUT):
        self.timeout = timeout

    async def detect(self, address: str, scope: Optional[CancelScope] = None) -> Capability:
        lines = await raw_command(address, "stats", timeout=self.timeout, scope=scope)
        version = parse_stats_response("\n".join(lines)).version
        if not version:
            raise DetectionFailedError(f"failed to detect server version of {address}")
        caps = Capability(version=version, supports_metadump=is_version_supported(version))
        logger.debug("Detected memcached %s at %s (metadump=%s)", version, address, caps.supports_metadump)
        return caps

    async def verify(self, address: str, scope: Optional[CancelScope] = None) -> Capability:
        caps = await self.detect(address, scope=scope)
        if not caps.supports_metadump:
            raise UnsupportedVersionError(caps.version, MIN_REQUIRED_VERSION)
        return caps
