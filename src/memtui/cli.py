"""CLI entry point for memtui."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Optional

import yaml

from . import __version__
from .capability import CapabilityDetector
from .client import Client
from .config import AppConfig, load_app_config
from .decompress import decompress, detect_compression
from .errors import DecompressionFailedError, MemtuiError
from .keys import KeyEnumerator
from .models import SortOrder, filter_key_metadata, sort_key_metadata
from .servers import ServerStore

logger = logging.getLogger("memtui.cli")


def resolve_address(args: argparse.Namespace, config: AppConfig, store: ServerStore) -> str:
    """``--addr`` > ``--server`` profile > last-used profile > configured default."""
    if args.addr:
        return args.addr
    if args.server:
        return store.get(args.server).address
    if store.path.exists():
        return store.get_last_used().address
    return config.default_address


def _format_timestamp(unix: int) -> str:
    if unix == 0:
        return "never"
    return datetime.fromtimestamp(unix).strftime("%Y-%m-%d %H:%M:%S")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memtui",
        description="memtui - inspect and edit a memcached server",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--addr", help="Server address (host:port); overrides profiles")
    parser.add_argument("--server", metavar="NAME", help="Use a saved server profile")
    parser.add_argument("--config", help="Path to memtui config (YAML)")
    parser.add_argument("--timeout", help="Connection timeout (e.g. 3, 500ms, 2s)")
    parser.add_argument("--verbose", "-v", action="store_true", default=None, help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("probe", help="Detect server version and metadump support")

    p_stats = sub.add_parser("stats", help="Show server statistics")
    p_stats.add_argument("--raw", action="store_true", help="Print every STAT line as reported")

    p_keys = sub.add_parser("keys", help="List keys via lru_crawler metadump")
    p_keys.add_argument("--filter", dest="pattern", default="", help="Only keys containing this substring")
    p_keys.add_argument("--sort", choices=["key", "size"], default="key", help="Sort order (default: key)")
    p_keys.add_argument("--limit", type=int, help="Show at most N keys")

    p_get = sub.add_parser("get", help="Print a value")
    p_get.add_argument("key")
    p_get.add_argument("--raw", action="store_true", help="Do not decompress the value")

    p_set = sub.add_parser("set", help="Store a value")
    p_set.add_argument("key")
    p_set.add_argument("value")
    p_set.add_argument("--ttl", type=int, default=0, help="Expiration in seconds (0 = never)")
    p_set.add_argument("--flags", type=int, default=0, help="Opaque client flags")

    p_delete = sub.add_parser("delete", help="Delete one or more keys")
    p_delete.add_argument("keys", nargs="+")

    sub.add_parser("ping", help="Measure round-trip latency")

    p_servers = sub.add_parser("servers", help="Manage saved server profiles")
    servers_sub = p_servers.add_subparsers(dest="servers_command")
    servers_sub.add_parser("list", help="List profiles")
    p_add = servers_sub.add_parser("add", help="Add a profile")
    p_add.add_argument("name")
    p_add.add_argument("address")
    p_remove = servers_sub.add_parser("remove", help="Remove a profile")
    p_remove.add_argument("name")
    p_default = servers_sub.add_parser("default", help="Mark a profile as default")
    p_default.add_argument("name")
    p_use = servers_sub.add_parser("use", help="Mark a profile as last used")
    p_use.add_argument("name")

    p_config = sub.add_parser("config", help="Show the resolved configuration")
    p_config.add_argument("--dump", action="store_true", help="Print as YAML in config-file layout")
    return parser


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_app_config(
            config_file=args.config,
            cli_overrides={"timeout": args.timeout, "verbose": args.verbose},
        )
    except MemtuiError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    level = logging.DEBUG if config.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        _dispatch(args, config)
    except MemtuiError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


def _dispatch(args: argparse.Namespace, config: AppConfig) -> None:
    store = ServerStore()

    if args.command == "servers":
        _run_servers(args, store)
        return
    if args.command == "config":
        _run_config(args, config)
        return

    address = resolve_address(args, config, store)
    logger.debug("Using server %s", address)

    if args.command == "probe":
        _run_probe(address, config)
    elif args.command == "keys":
        _run_keys(args, address, config)
    else:
        with Client(address, timeout=config.connection_timeout, max_idle_conns=config.max_idle_conns) as client:
            if args.command == "stats":
                _run_stats(args, client)
            elif args.command == "get":
                _run_get(args, client)
            elif args.command == "set":
                client.set(args.key, args.value, flags=args.flags, expiration=args.ttl)
                print(f"Stored {args.key}")
            elif args.command == "delete":
                _run_delete(args, client)
            elif args.command == "ping":
                latency = asyncio.run(client.ping())
                print(f"{address}: {latency * 1000:.2f} ms")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _run_probe(address: str, config: AppConfig) -> None:
    caps = asyncio.run(CapabilityDetector(config.capability_timeout).detect(address))
    print(f"Server:   {address}")
    print(f"Version:  {caps.version}")
    print(f"Metadump: {'supported' if caps.supports_metadump else 'not supported'}")


def _run_stats(args: argparse.Namespace, client: Client) -> None:
    stats = asyncio.run(client.stats())
    if args.raw:
        for name, value in stats.raw.items():
            print(f"{name} {value}")
        return
    print(f"Version:      {stats.version}")
    print(f"Uptime:       {stats.uptime_formatted()}")
    print(f"Connections:  {stats.curr_connections} (total {stats.total_connections})")
    print(f"Items:        {stats.curr_items} (total {stats.total_items})")
    print(f"Memory:       {stats.bytes_formatted()} ({stats.memory_usage_percent:.1f}%)")
    print(f"Hit rate:     {stats.hit_rate:.1f}% ({stats.get_hits} hits, {stats.get_misses} misses)")
    print(f"Evictions:    {stats.evictions}")


def _run_keys(args: argparse.Namespace, address: str, config: AppConfig) -> None:
    async def _collect():
        detector = CapabilityDetector(config.capability_timeout)
        await detector.verify(address)
        return await KeyEnumerator(address, config.key_enumeration_timeout).enumerate_all()

    keys = asyncio.run(_collect())
    keys = filter_key_metadata(keys, args.pattern)
    keys = sort_key_metadata(keys, SortOrder.SIZE if args.sort == "size" else SortOrder.KEY)
    total = len(keys)
    if args.limit is not None:
        keys = keys[: max(0, args.limit)]
    for meta in keys:
        print(f"{meta.key}\t{meta.size_bytes}\t{_format_timestamp(meta.expiration_unix)}")
    print(f"{total} keys", file=sys.stderr)


def _run_get(args: argparse.Namespace, client: Client) -> None:
    item = client.get(args.key)
    value = item.value
    if not args.raw:
        fmt = detect_compression(value)
        try:
            value = decompress(value)
        except DecompressionFailedError as exc:
            logger.warning("%s; showing raw bytes", exc)
        else:
            if fmt:
                logger.debug("Decompressed %s value (%d -> %d bytes)", fmt, item.size, len(value))
    sys.stdout.write(value.decode("utf-8", errors="replace"))
    if not value.endswith(b"\n"):
        sys.stdout.write("\n")


def _run_delete(args: argparse.Namespace, client: Client) -> None:
    result = client.delete_many(args.keys)
    for key in result.failed:
        print(f"  [!] {key}: {result.errors[key]}", file=sys.stderr)
    summary = result.summary()
    print(summary)
    if not summary.all_succeeded:
        sys.exit(1)


def _run_servers(args: argparse.Namespace, store: ServerStore) -> None:
    cmd = args.servers_command or "list"
    if cmd == "list":
        last_used = store.load().last_used
        for profile in store.list():
            marks = []
            if profile.is_default:
                marks.append("default")
            if profile.name == last_used:
                marks.append("last used")
            suffix = f" ({', '.join(marks)})" if marks else ""
            print(f"{profile.name}\t{profile.address}{suffix}")
    elif cmd == "add":
        store.add(args.name, args.address)
        print(f"Added {args.name} ({args.address})")
    elif cmd == "remove":
        store.remove(args.name)
        print(f"Removed {args.name}")
    elif cmd == "default":
        store.set_default(args.name)
        print(f"Default server: {args.name}")
    elif cmd == "use":
        store.set_last_used(args.name)
        print(f"Using {args.name}")


def _run_config(args: argparse.Namespace, config: AppConfig) -> None:
    if args.dump:
        print(yaml.safe_dump(config.to_dict(), sort_keys=False), end="")
        return
    print(
        json.dumps(
            {
                "default_address": config.default_address,
                "connection_timeout": config.connection_timeout,
                "key_enumeration_timeout": config.key_enumeration_timeout,
                "capability_timeout": config.capability_timeout,
                "max_idle_conns": config.max_idle_conns,
                "verbose": config.verbose,
                "source_path": config.source_path,
            },
            indent=2,
        )
    )
