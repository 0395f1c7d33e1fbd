"""Exception types raised by the memtui server-interaction layer."""

from __future__ import annotations

from typing import Optional


class MemtuiError(Exception):
    """Base class for every error surfaced by memtui."""


class InvalidAddressError(MemtuiError, ValueError):
    """Address is not in ``host:port`` form."""


class TransportError(MemtuiError):
    """Connect, read or write failure. The underlying cause is chained."""


class OperationTimeoutError(MemtuiError, TimeoutError):
    """Deadline exceeded."""


class CancelledError(MemtuiError):
    """An external cancellation scope fired."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class CacheMissError(MemtuiError, KeyError):
    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"cache miss for key '{self.key}'"


class CASConflictError(MemtuiError):
    """The item changed or disappeared between the tokened read and the write."""

    def __init__(self, key: str):
        super().__init__(f"CAS conflict for key '{key}': item has been modified")
        self.key = key


class InvalidArgumentError(MemtuiError, ValueError):
    pass


class ServerError(MemtuiError):
    """Server answered with an ``ERROR``/``CLIENT_ERROR``/``SERVER_ERROR`` line."""

    def __init__(self, line: str):
        super().__init__(f"server error: {line}")
        self.line = line


class DecompressionFailedError(MemtuiError):
    def __init__(self, fmt: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"failed to decompress {fmt} payload{detail}")
        self.format = fmt


class DetectionFailedError(MemtuiError):
    """Capability probe could not determine the server version."""


class UnsupportedVersionError(MemtuiError):
    def __init__(self, detected: str, minimum: str):
        super().__init__(
            f"memcached version {minimum} or later is required for lru_crawler "
            f"metadump support (detected: {detected})"
        )
        self.detected = detected
        self.minimum = minimum


class MetadumpParseError(MemtuiError, ValueError):
    """A metadump line yielded no usable record. Skipped by the enumerator."""


class ConfigError(MemtuiError, ValueError):
    """Invalid settings file or server-profile operation."""
