"""Key enumeration via ``lru_crawler metadump all``."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import MemtuiError, MetadumpParseError, ServerError, TransportError
from .models import KeyMetadata, parse_metadump_line, validate_address
from .scope import CancelScope
from .transport import END, RawConnection, await_within, is_error_line

logger = logging.getLogger("memtui.keys")

METADUMP_COMMAND = "lru_crawler metadump all"
DEFAULT_ENUMERATION_TIMEOUT = 30.0
STREAM_BUFFER_SIZE = 100

_DONE = object()


class KeyStream:
    """Records handed over from a producer task through a bounded queue.

    Iterate with ``async for``; when iteration ends, ``error`` holds the
    terminal error (None after a clean ``END``). Leaving the ``async with``
    block early stops the producer and closes its connection.
    """

    def __init__(self, maxsize: int = STREAM_BUFFER_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._error: Optional[BaseException] = None
        self._exhausted = False

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def __aiter__(self) -> "KeyStream":
        return self

    async def __anext__(self) -> KeyMetadata:
        if self._exhausted:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _DONE:
            self._exhausted = True
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "KeyStream":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._exhausted = True

    async def _put(self, meta: KeyMetadata, scope: Optional[CancelScope]) -> None:
        await await_within(self._queue.put(meta), scope=scope)

    async def _finish(self, error: Optional[BaseException]) -> None:
        self._error = error
        await self._queue.put(_DONE)


class KeyEnumerator:
    """Stream key metadata from one server.

    Every call opens its own connection. The read deadline is
    ``min(timeout, scope deadline)``; records are delivered in server order.
    """

    def __init__(self, address: str, timeout: float = DEFAULT_ENUMERATION_TIMEOUT):
        self.address = validate_address(address)
        self.timeout = timeout

    def stream(self, scope: Optional[CancelScope] = None) -> KeyStream:
        """Start the producer task and return the consumer side.

        Must be called from a running event loop. Use the result as an async
        context manager, or call ``aclose()`` when stopping before the end:
        breaking out of a bare ``async for`` leaves the producer blocked on the
        full queue with its connection open.
        """
        stream = KeyStream()
        stream._task = asyncio.get_running_loop().create_task(self._produce(stream, scope))
        return stream

    async def enumerate_all(self, scope: Optional[CancelScope] = None) -> list[KeyMetadata]:
        """Collect every record; raises the terminal error if there was one."""
        async with self.stream(scope) as stream:
            keys = [meta async for meta in stream]
        if stream.error is not None:
            raise stream.error
        return keys

    async def _produce(self, stream: KeyStream, scope: Optional[CancelScope]) -> None:
        error: Optional[BaseException] = None
        delivered = skipped = 0
        try:
            async with RawConnection(self.address, timeout=self.timeout, scope=scope) as conn:
                await conn.send(METADUMP_COMMAND)
                while True:
                    if scope is not None:
                        scope.raise_if_cancelled()
                    line = await conn.readline()
                    if line is None:
                        raise TransportError(f"connection to {self.address} closed before {END}")
                    if line == END:
                        break
                    if is_error_line(line) or line.startswith("BUSY"):
                        raise ServerError(line)
                    if not line:
                        continue
                    try:
                        meta = parse_metadump_line(line)
                    except MetadumpParseError:
                        skipped += 1
                        logger.debug("Skipping metadump line: %s", line[:100])
                        continue
                    if scope is not None:
                        scope.raise_if_cancelled()
                    await stream._put(meta, scope)
                    delivered += 1
        except MemtuiError as exc:
            error = exc
        except Exception as exc:
            logger.error("key enumeration failed: %s", exc)
            error = exc
        logger.debug(
            "Metadump of %s finished: %d keys, %d skipped lines, error=%s",
            self.address,
            delivered,
            skipped,
            error,
        )
        await stream._finish(error)
