"""Raw memcached ASCII-protocol transport.

Used for the commands the pooled client library cannot issue (``stats``,
``lru_crawler metadump``, ``version``). Each request owns a fresh TCP
connection that is closed on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import MemtuiError, OperationTimeoutError, ServerError, TransportError
from .models import socket_address, validate_address
from .scope import CancelScope, effective_deadline

logger = logging.getLogger("memtui.transport")

DEFAULT_TIMEOUT = 3.0
STREAM_LIMIT = 1024 * 1024
END = "END"
ERROR_PREFIXES = ("ERROR", "CLIENT_ERROR", "SERVER_ERROR")


def is_error_line(line: str) -> bool:
    return line.startswith(ERROR_PREFIXES)


async def await_within(
    aw: Awaitable[Any],
    *,
    deadline: Optional[float] = None,
    scope: Optional[CancelScope] = None,
    on_discard: Optional[Callable[[Any], None]] = None,
) -> Any:
    """Await ``aw`` until it completes, the deadline passes or the scope fires.

    A fired scope wins over both the result and any error of ``aw``; an
    expired deadline raises ``OperationTimeoutError``. ``aw`` is cancelled
    when it does not finish first. A result that arrives together with a
    fired scope is handed to ``on_discard`` before the scope reason is raised.
    """
    if scope is not None and scope.cancelled:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise scope.reason
    task = asyncio.ensure_future(aw)
    waiters = {task}
    if scope is not None:
        waiters.add(asyncio.ensure_future(scope.wait()))
    timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()

    if scope is not None and scope.cancelled:
        if task.done() and not task.cancelled():
            if task.exception() is None and on_discard is not None:
                on_discard(task.result())
        raise scope.reason
    if task in done:
        return task.result()
    raise OperationTimeoutError("deadline exceeded")


def _close_stream_pair(pair: Any) -> None:
    _, writer = pair
    writer.close()


class RawConnection:
    """One TCP connection speaking the text protocol, bounded by a single deadline.

    Usage::

        async with RawConnection("localhost:11211", timeout=3.0) as conn:
            await conn.send("stats")
            line = await conn.readline()
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        scope: Optional[CancelScope] = None,
    ):
        self.address = validate_address(address)
        self.timeout = timeout
        self.scope = scope
        self.deadline: Optional[float] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def __aenter__(self) -> "RawConnection":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self) -> None:
        host, port = socket_address(self.address)
        try:
            self._reader, self._writer = await await_within(
                asyncio.open_connection(host, port, limit=STREAM_LIMIT),
                deadline=effective_deadline(self.timeout, self.scope),
                scope=self.scope,
                on_discard=_close_stream_pair,
            )
        except MemtuiError:
            raise
        except OSError as exc:
            raise TransportError(f"failed to connect to {self.address}: {exc}") from exc
        # One deadline covers the write and the whole read.
        self.deadline = effective_deadline(self.timeout, self.scope)
        logger.debug("Connected to %s", self.address)

    async def close(self) -> None:
        writer = self._writer
        self._reader = self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("Error closing connection to %s: %s", self.address, exc)

    async def send(self, command: str) -> None:
        if self._writer is None:
            raise TransportError("connection is not open")
        try:
            self._writer.write(command.encode("utf-8") + b"\r\n")
            await await_within(self._writer.drain(), deadline=self.deadline, scope=self.scope)
        except MemtuiError:
            raise
        except OSError as exc:
            raise TransportError(f"failed to send command to {self.address}: {exc}") from exc

    async def readline(self) -> Optional[str]:
        """Next line with ``\\r\\n`` stripped, or None at EOF."""
        if self._reader is None:
            raise TransportError("connection is not open")
        try:
            raw = await await_within(self._reader.readline(), deadline=self.deadline, scope=self.scope)
        except MemtuiError:
            raise
        except (OSError, ValueError) as exc:
            raise TransportError(f"failed to read response from {self.address}: {exc}") from exc
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")


async def raw_command(
    address: str,
    command: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    scope: Optional[CancelScope] = None,
) -> list[str]:
    """Send ``command`` and collect reply lines up to ``END``.

    Empty lines and the terminator are dropped. An error line raises
    ``ServerError`` carrying the raw line.
    """
    lines: list[str] = []
    async with RawConnection(address, timeout=timeout, scope=scope) as conn:
        await conn.send(command)
        while True:
            line = await conn.readline()
            if line is None:
                raise TransportError(f"connection to {address} closed before {END}")
            if line == END:
                return lines
            if is_error_line(line):
                raise ServerError(line)
            if line:
                lines.append(line)


async def request_line(
    address: str,
    command: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    scope: Optional[CancelScope] = None,
) -> str:
    """Send ``command`` and return its single reply line."""
    async with RawConnection(address, timeout=timeout, scope=scope) as conn:
        await conn.send(command)
        line = await conn.readline()
    if line is None:
        raise TransportError(f"connection to {address} closed without a reply")
    if is_error_line(line):
        raise ServerError(line)
    return line


async def fetch_version(
    address: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    scope: Optional[CancelScope] = None,
) -> str:
    line = await request_line(address, "version", timeout=timeout, scope=scope)
    prefix, _, version = line.partition(" ")
    if prefix != "VERSION" or not version:
        raise ServerError(line)
    return version.strip()
