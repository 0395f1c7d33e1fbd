"""Key metadata from ``lru_crawler metadump`` and the item model used by the viewer."""

from __future__ import annotations

import enum
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import unquote_to_bytes

from .errors import InvalidAddressError, InvalidArgumentError, MetadumpParseError

MAX_KEY_LENGTH = 250
PERMANENT = 0

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1
_UINT64_MAX = (1 << 64) - 1

_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_DECIMAL_RE = re.compile(r"[+-]?[0-9]+")


def split_address(address: str) -> tuple[str, str]:
    """Split ``host:port`` on the last colon. Brackets around IPv6 hosts are dropped."""
    if not isinstance(address, str):
        raise InvalidAddressError("invalid address format: expected host:port")
    host, sep, port = address.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not sep or not host or not port:
        raise InvalidAddressError(f"invalid address format: expected host:port (got {address!r})")
    if any(ch.isspace() for ch in address):
        raise InvalidAddressError(f"invalid address format: whitespace in {address!r}")
    return host, port


def validate_address(address: str) -> str:
    split_address(address)
    return address


def socket_address(address: str) -> tuple[str, object]:
    """``(host, port)`` suitable for socket APIs; numeric ports become ints."""
    host, port = split_address(address)
    return host, int(port) if port.isdigit() else port


@dataclass(frozen=True)
class KeyMetadata:
    """One record of an LRU metadump."""

    key: str
    expiration_unix: int = PERMANENT
    last_access_unix: int = 0
    cas_id: int = 0
    fetched: bool = False
    slab_class: int = 0
    size_bytes: int = 0

    @property
    def is_permanent(self) -> bool:
        return self.expiration_unix == PERMANENT

    def is_expired_at(self, now: Optional[float] = None) -> bool:
        """True when the record carries an expiration that lies before ``now``."""
        if self.expiration_unix == PERMANENT:
            return False
        if now is None:
            now = time.time()
        return self.expiration_unix < now


class SortOrder(enum.Enum):
    KEY = "key"
    SIZE = "size"


def _percent_decode(value: str) -> str:
    if _BAD_ESCAPE_RE.search(value):
        raise ValueError(f"invalid percent escape in {value!r}")
    return unquote_to_bytes(value).decode("utf-8")


def _parse_int(value: str, low: int, high: int) -> int:
    if not _DECIMAL_RE.fullmatch(value):
        return 0
    parsed = int(value, 10)
    if parsed < low or parsed > high:
        return 0
    return parsed


def parse_metadump_line(line: str) -> KeyMetadata:
    """Parse ``key=<k> exp=<e> la=<l> cas=<c> fetch=<yes|no> cls=<n> size=<n>``.

    Fields may come in any order and unknown fields are ignored. A numeric
    field that fails to parse reads as zero. Raises ``MetadumpParseError`` when
    the line carries no key.
    """
    line = line.rstrip("\r").strip()
    if not line or line == "END":
        raise MetadumpParseError(f"not a metadump record: {line!r}")

    fields = {
        "key": "",
        "exp": PERMANENT,
        "la": 0,
        "cas": 0,
        "fetch": False,
        "cls": 0,
        "size": 0,
    }
    for token in line.split():
        name, sep, value = token.partition("=")
        if not sep:
            continue
        if name == "key":
            try:
                fields["key"] = _percent_decode(value)
            except ValueError:
                fields["key"] = value
        elif name in ("exp", "la"):
            fields[name] = _parse_int(value, _INT64_MIN, _INT64_MAX)
        elif name == "cas":
            fields["cas"] = _parse_int(value, 0, _UINT64_MAX)
        elif name == "fetch":
            fields["fetch"] = value == "yes"
        elif name in ("cls", "size"):
            fields[name] = _parse_int(value, 0, _INT64_MAX)

    if not fields["key"]:
        raise MetadumpParseError(f"metadump record without key: {line!r}")

    return KeyMetadata(
        key=fields["key"],
        expiration_unix=fields["exp"],
        last_access_unix=fields["la"],
        cas_id=fields["cas"],
        fetched=fields["fetch"],
        slab_class=fields["cls"],
        size_bytes=fields["size"],
    )


def sort_key_metadata(keys: Iterable[KeyMetadata], order: SortOrder = SortOrder.KEY) -> list[KeyMetadata]:
    """Return a sorted copy; ties keep their original order."""
    if order is SortOrder.SIZE:
        return sorted(keys, key=lambda k: k.size_bytes)
    return sorted(keys, key=lambda k: k.key)


def filter_key_metadata(keys: Iterable[KeyMetadata], pattern: str) -> list[KeyMetadata]:
    if not pattern:
        return list(keys)
    return [k for k in keys if pattern in k.key]


def validate_key_name(key: str) -> None:
    """Reject keys the memcached text protocol cannot carry."""
    if not key:
        raise InvalidArgumentError("key cannot be empty")
    size = len(key.encode("utf-8"))
    if size > MAX_KEY_LENGTH:
        raise InvalidArgumentError(f"key cannot exceed {MAX_KEY_LENGTH} bytes (got {size})")
    for pos, ch in enumerate(key):
        if ch == " ":
            raise InvalidArgumentError("key cannot contain spaces")
        if ch in "\r\n":
            raise InvalidArgumentError("key cannot contain newlines")
        if unicodedata.category(ch) == "Cc":
            raise InvalidArgumentError(f"key cannot contain control characters (found at position {pos})")
        if ch.isspace():
            raise InvalidArgumentError("key cannot contain whitespace characters")


@dataclass
class Item:
    """A value as shown in the viewer/editor.

    ``expiration`` is an absolute Unix timestamp (0 = permanent), usually taken
    from the matching metadump record since ``get`` does not report it.
    """

    key: str
    value: bytes = b""
    flags: int = 0
    cas: int = 0
    expiration: int = PERMANENT
    last_access: int = 0
    ttl_remaining: int = -1
    is_expired: bool = False

    @classmethod
    def from_metadata(cls, meta: KeyMetadata, value: bytes = b"", flags: int = 0) -> "Item":
        item = cls(
            key=meta.key,
            value=value,
            flags=flags,
            cas=meta.cas_id,
            expiration=meta.expiration_unix,
            last_access=meta.last_access_unix,
        )
        item.refresh_ttl()
        return item

    @property
    def size(self) -> int:
        return len(self.value)

    def refresh_ttl(self, now: Optional[float] = None) -> None:
        """Recompute ``ttl_remaining`` (-1 permanent, 0 expired) and ``is_expired``."""
        if now is None:
            now = time.time()
        now_s = int(now)
        if self.expiration == PERMANENT:
            self.ttl_remaining = -1
            self.is_expired = False
        elif self.expiration <= now_s:
            self.ttl_remaining = 0
            self.is_expired = True
        else:
            self.ttl_remaining = self.expiration - now_s
            self.is_expired = False
