"""Parsing of memcached ``stats``, ``stats items`` and ``stats slabs`` responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024

# Known integer fields of a plain ``stats`` response; each is a ``Stats`` attribute.
_INT_FIELDS = frozenset(
    {
        "pid",
        "uptime",
        "curr_connections",
        "total_connections",
        "curr_items",
        "total_items",
        "bytes",
        "limit_maxbytes",
        "get_hits",
        "get_misses",
        "evictions",
        "bytes_read",
        "bytes_written",
    }
)
_SLAB_ITEM_FIELDS = frozenset({"number", "age", "evicted", "evicted_nonzero", "outofmemory"})
_SLAB_FIELDS = frozenset({"chunk_size", "total_chunks", "used_chunks", "free_chunks", "mem_requested"})


@dataclass
class Stats:
    pid: int = 0
    uptime: int = 0
    version: str = ""
    curr_connections: int = 0
    total_connections: int = 0
    curr_items: int = 0
    total_items: int = 0
    bytes: int = 0
    limit_maxbytes: int = 0
    get_hits: int = 0
    get_misses: int = 0
    evictions: int = 0
    bytes_read: int = 0
    bytes_written: int = 0
    hit_rate: float = 0.0
    memory_usage_percent: float = 0.0
    raw: dict[str, str] = field(default_factory=dict)

    def uptime_formatted(self) -> str:
        days, rest = divmod(max(0, self.uptime), 86400)
        hours, rest = divmod(rest, 3600)
        minutes, seconds = divmod(rest, 60)
        if days:
            return f"{days}d {hours}h {minutes}m {seconds}s"
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    def bytes_formatted(self) -> str:
        return format_bytes(self.bytes)


@dataclass
class SlabItemStats:
    slab_id: int
    number: int = 0
    age: int = 0
    evicted: int = 0
    evicted_nonzero: int = 0
    outofmemory: int = 0


@dataclass
class SlabStats:
    slab_id: int
    chunk_size: int = 0
    total_chunks: int = 0
    used_chunks: int = 0
    free_chunks: int = 0
    mem_requested: int = 0


@dataclass
class SlabsStats:
    active_slabs: int = 0
    total_malloced: int = 0
    slabs: dict[int, SlabStats] = field(default_factory=dict)


def format_bytes(size: int) -> str:
    if size >= _GB:
        return f"{size / _GB:.2f} GB"
    if size >= _MB:
        return f"{size / _MB:.2f} MB"
    if size >= _KB:
        return f"{size / _KB:.2f} KB"
    return f"{size} B"


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def iter_stat_lines(response: str) -> Iterator[tuple[str, str]]:
    """Yield ``(name, value)`` for every well-formed ``STAT <name> <value>`` line."""
    for line in response.split("\n"):
        line = line.rstrip("\r").strip()
        if not line or line == "END":
            continue
        parts = line.split(" ", 2)
        if len(parts) < 3 or parts[0] != "STAT":
            continue
        yield parts[1], parts[2]


def parse_stats_response(response: str) -> Stats:
    """Parse the full text of a ``stats`` reply.

    Known numeric fields that fail to parse read as zero; ``raw`` keeps the
    original text of every ``STAT`` line.
    """
    stats = Stats()
    for name, value in iter_stat_lines(response):
        stats.raw[name] = value
        if name == "version":
            stats.version = value
        elif name in _INT_FIELDS:
            setattr(stats, name, _to_int(value))

    lookups = stats.get_hits + stats.get_misses
    if lookups > 0:
        stats.hit_rate = stats.get_hits / lookups * 100
    if stats.limit_maxbytes > 0:
        stats.memory_usage_percent = stats.bytes / stats.limit_maxbytes * 100
    return stats


def parse_slab_item_stats(response: str) -> dict[int, SlabItemStats]:
    """Parse ``stats items`` (``STAT items:<slab>:<field> <value>``)."""
    out: dict[int, SlabItemStats] = {}
    for name, value in iter_stat_lines(response):
        parts = name.split(":")
        if len(parts) != 3 or parts[0] != "items":
            continue
        try:
            slab_id = int(parts[1])
        except ValueError:
            continue
        entry = out.setdefault(slab_id, SlabItemStats(slab_id=slab_id))
        if parts[2] in _SLAB_ITEM_FIELDS:
            setattr(entry, parts[2], _to_int(value))
    return out


def parse_slabs_stats(response: str) -> SlabsStats:
    """Parse ``stats slabs`` (``STAT <slab>:<field> <value>`` plus totals)."""
    result = SlabsStats()
    for name, value in iter_stat_lines(response):
        if name == "active_slabs":
            result.active_slabs = _to_int(value)
            continue
        if name == "total_malloced":
            result.total_malloced = _to_int(value)
            continue
        slab, sep, attr = name.partition(":")
        if not sep:
            continue
        try:
            slab_id = int(slab)
        except ValueError:
            continue
        entry = result.slabs.setdefault(slab_id, SlabStats(slab_id=slab_id))
        if attr in _SLAB_FIELDS:
            setattr(entry, attr, _to_int(value))
    return result
