"""Basic memcached client façade over pymemcache's pooled client."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, NamedTuple, Optional, Union

from pymemcache.client.base import PooledClient
from pymemcache.exceptions import (
    MemcacheClientError,
    MemcacheError,
    MemcacheIllegalInputError,
    MemcacheServerError,
    MemcacheUnexpectedCloseError,
    MemcacheUnknownError,
)

from . import cas as cas_ops
from .cas import CASItem
from .errors import (
    CacheMissError,
    InvalidArgumentError,
    MemtuiError,
    OperationTimeoutError,
    ServerError,
    TransportError,
)
from .models import PERMANENT, Item, socket_address, validate_address, validate_key_name
from .scope import CancelScope, effective_deadline
from .stats import Stats, parse_stats_response
from .transport import await_within, raw_command

logger = logging.getLogger("memtui.client")

DEFAULT_TIMEOUT = 3.0
DEFAULT_MAX_IDLE_CONNS = 2


class StoredValue(NamedTuple):
    value: bytes
    flags: int


class FlagsSerde:
    """Pass bytes through untouched and hand back ``(value, flags)`` on reads."""

    def serialize(self, key, value):
        if isinstance(value, str):
            value = value.encode("utf-8")
        return value, 0

    def deserialize(self, key, value, flags):
        return StoredValue(value, flags)


@contextlib.contextmanager
def translate_errors(op: str) -> Iterator[None]:
    """Map pymemcache and socket failures onto memtui error kinds."""
    try:
        yield
    except MemtuiError:
        raise
    except MemcacheIllegalInputError as exc:
        raise InvalidArgumentError(f"{op}: {exc}") from exc
    except MemcacheUnexpectedCloseError as exc:
        raise TransportError(f"{op} failed: connection closed by server") from exc
    except (MemcacheClientError, MemcacheServerError) as exc:
        raise ServerError(str(exc)) from exc
    except MemcacheUnknownError as exc:
        reply = exc.args[0] if exc.args else b""
        if isinstance(reply, bytes):
            reply = reply.decode("utf-8", errors="replace")
        raise ServerError(str(reply)) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise OperationTimeoutError(f"{op} timed out") from exc
    except (MemcacheError, OSError) as exc:
        raise TransportError(f"{op} failed: {exc}") from exc


@dataclass
class BatchDeleteSummary:
    total: int
    deleted: int
    failed: int
    failed_keys: list[str]

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0

    @property
    def should_refresh(self) -> bool:
        return self.deleted > 0

    def __str__(self) -> str:
        if self.total == 0:
            return "No keys to delete"
        if self.all_succeeded:
            if self.deleted == 1:
                return "Successfully deleted 1 key"
            return f"Successfully deleted {self.deleted} keys"
        if self.deleted == 0:
            if self.failed == 1:
                return "Failed to delete 1 key"
            return f"Failed to delete all {self.failed} keys"
        return f"Deleted {self.deleted} keys, {self.failed} failed"


@dataclass
class BatchDeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, MemtuiError] = field(default_factory=dict)

    def summary(self) -> BatchDeleteSummary:
        return BatchDeleteSummary(
            total=len(self.deleted) + len(self.failed),
            deleted=len(self.deleted),
            failed=len(self.failed),
            failed_keys=list(self.failed),
        )


class Client:
    """Client for one memcached server.

    ``get``/``set``/``delete`` and the CAS pair go through a pooled pymemcache
    client and are safe to call from several threads. ``ping``, ``stats`` and
    ``raw_command`` are coroutines that honour a ``CancelScope``.
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_idle_conns: int = DEFAULT_MAX_IDLE_CONNS,
        backend: Any = None,
    ):
        self._address = validate_address(address)
        self.timeout = timeout
        self.max_idle_conns = max_idle_conns
        if backend is None:
            backend = PooledClient(
                socket_address(address),
                serde=FlagsSerde(),
                connect_timeout=timeout,
                timeout=timeout,
                max_pool_size=max_idle_conns,
                default_noreply=False,
                allow_unicode_keys=True,
            )
        self._mc = backend

    @property
    def address(self) -> str:
        return self._address

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        """Drop idle pooled connections; later calls reconnect lazily."""
        with translate_errors("close"):
            self._mc.close()

    # Basic operations

    def get(self, key: str) -> Item:
        validate_key_name(key)
        with translate_errors("get"):
            stored = self._mc.get(key)
        if stored is None:
            raise CacheMissError(key)
        value, flags = cas_ops.unpack_stored(stored)
        return Item(key=key, value=value, flags=flags)

    def set(
        self,
        key: str,
        value: Union[bytes, str],
        *,
        flags: int = 0,
        expiration: int = PERMANENT,
    ) -> None:
        """Store ``value``. ``expiration`` is passed through unchanged (see ``CASItem``)."""
        validate_key_name(key)
        if isinstance(value, str):
            value = value.encode("utf-8")
        with translate_errors("set"):
            stored = self._mc.set(key, value, expire=expiration, noreply=False, flags=flags)
        if not stored:
            raise ServerError("NOT_STORED")

    def set_item(self, item: Item, expiration: int = PERMANENT) -> None:
        self.set(item.key, item.value, flags=item.flags, expiration=expiration)

    def delete(self, key: str) -> None:
        validate_key_name(key)
        with translate_errors("delete"):
            deleted = self._mc.delete(key, noreply=False)
        if not deleted:
            raise CacheMissError(key)

    def delete_many(self, keys: Iterable[str]) -> BatchDeleteResult:
        """Delete each key in turn, recording per-key failures instead of stopping."""
        result = BatchDeleteResult()
        for key in keys:
            try:
                self.delete(key)
            except MemtuiError as exc:
                result.failed.append(key)
                result.errors[key] = exc
            else:
                result.deleted.append(key)
        if result.failed:
            logger.info("Batch delete: %d deleted, %d failed", len(result.deleted), len(result.failed))
        return result

    # Optimistic updates

    def get_with_token(self, key: str) -> CASItem:
        validate_key_name(key)
        with translate_errors("gets"):
            return cas_ops.get_with_token(self._mc, key)

    def compare_and_swap(self, item: Optional[CASItem]) -> None:
        with translate_errors("cas"):
            cas_ops.compare_and_swap(self._mc, item)

    # Liveness and raw protocol

    def _version(self) -> Any:
        with translate_errors("ping"):
            return self._mc.version()

    async def ping(self, scope: Optional[CancelScope] = None) -> float:
        """Round-trip a ``version`` request and return the latency in seconds.

        A fired scope is reported right away even if the request is still in
        flight; the worker thread returns its connection to the pool when the
        request finishes.
        """
        start = time.monotonic()
        await await_within(
            asyncio.to_thread(self._version),
            deadline=effective_deadline(self.timeout, scope),
            scope=scope,
        )
        return time.monotonic() - start

    async def raw_command(self, command: str, scope: Optional[CancelScope] = None) -> list[str]:
        return await raw_command(self._address, command, timeout=self.timeout, scope=scope)

    async def stats(self, scope: Optional[CancelScope] = None) -> Stats:
        lines = await self.raw_command("stats", scope=scope)
        return parse_stats_response("\n".join(lines))
