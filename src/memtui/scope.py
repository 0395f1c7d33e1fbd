"""Cancellation scopes for networked operations."""

from __future__ import annotations

import asyncio
import time
from typing import Optional, Union

from .errors import CancelledError, MemtuiError, OperationTimeoutError


class CancelScope:
    """A cancellation signal with an optional deadline.

    The scope fires when ``cancel()`` is called or when its deadline passes.
    Once fired, ``reason`` holds the error that aborted operations should
    raise: the value given to ``cancel()`` or an ``OperationTimeoutError`` for
    an expired deadline. ``cancel()`` must be called from the event loop thread.
    """

    def __init__(self, timeout: Optional[float] = None, *, deadline: Optional[float] = None):
        if deadline is None and timeout is not None:
            deadline = time.monotonic() + timeout
        self.deadline = deadline
        self._event = asyncio.Event()
        self._reason: Optional[MemtuiError] = None

    def cancel(self, reason: Union[MemtuiError, str, None] = None) -> None:
        if self._reason is None:
            if isinstance(reason, MemtuiError):
                self._reason = reason
            else:
                self._reason = CancelledError(reason or "operation cancelled")
        self._event.set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._reason is not None or self.expired

    @property
    def reason(self) -> Optional[MemtuiError]:
        if self._reason is not None:
            return self._reason
        if self.expired:
            self._reason = OperationTimeoutError("deadline exceeded")
            return self._reason
        return None

    def raise_if_cancelled(self) -> None:
        reason = self.reason
        if reason is not None:
            raise reason

    async def wait(self) -> MemtuiError:
        """Block until the scope fires and return its reason."""
        while True:
            reason = self.reason
            if reason is not None:
                return reason
            remaining = self.remaining()
            if remaining is None:
                await self._event.wait()
                continue
            try:
                await asyncio.wait_for(self._event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass


def effective_deadline(timeout: Optional[float], scope: Optional[CancelScope] = None) -> Optional[float]:
    """``min(now + timeout, scope.deadline)`` on the monotonic clock."""
    deadline = None if timeout is None else time.monotonic() + timeout
    if scope is not None and scope.deadline is not None:
        deadline = scope.deadline if deadline is None else min(deadline, scope.deadline)
    return deadline
