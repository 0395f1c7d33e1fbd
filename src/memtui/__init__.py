"""memtui - memcached inspection client."""

__version__ = "0.1.0"

from .capability import Capability, CapabilityDetector
from .cas import CASItem, compare_and_swap, get_with_token
from .client import BatchDeleteResult, BatchDeleteSummary, Client
from .config import AppConfig, load_app_config
from .decompress import decompress, detect_compression
from .errors import (
    CacheMissError,
    CancelledError,
    CASConflictError,
    ConfigError,
    DecompressionFailedError,
    DetectionFailedError,
    InvalidAddressError,
    InvalidArgumentError,
    MemtuiError,
    MetadumpParseError,
    OperationTimeoutError,
    ServerError,
    TransportError,
    UnsupportedVersionError,
)
from .keys import KeyEnumerator, KeyStream
from .models import Item, KeyMetadata, SortOrder, parse_metadump_line
from .scope import CancelScope
from .servers import ProfileSet, ServerProfile, ServerStore
from .stats import Stats, parse_stats_response
from .transport import raw_command

__all__ = [
    "AppConfig",
    "BatchDeleteResult",
    "BatchDeleteSummary",
    "CacheMissError",
    "CancelScope",
    "CancelledError",
    "Capability",
    "CapabilityDetector",
    "CASConflictError",
    "CASItem",
    "Client",
    "ConfigError",
    "DecompressionFailedError",
    "DetectionFailedError",
    "InvalidAddressError",
    "InvalidArgumentError",
    "Item",
    "KeyEnumerator",
    "KeyMetadata",
    "KeyStream",
    "MemtuiError",
    "MetadumpParseError",
    "OperationTimeoutError",
    "ProfileSet",
    "ServerError",
    "ServerProfile",
    "ServerStore",
    "SortOrder",
    "Stats",
    "TransportError",
    "UnsupportedVersionError",
    "compare_and_swap",
    "decompress",
    "detect_compression",
    "get_with_token",
    "load_app_config",
    "parse_metadump_line",
    "parse_stats_response",
    "raw_command",
]
