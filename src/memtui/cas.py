"""Optimistic updates with ``gets``/``cas``.

Typical use::

    item = get_with_token(mc, "counter")
    item.value = b"42"
    compare_and_swap(mc, item)   # raises CASConflictError if someone wrote first

``mc`` is any object with the pymemcache ``gets``/``cas`` surface whose reads
return ``(value, flags)`` pairs (see ``memtui.client.FlagsSerde``). No retry is
attempted on conflict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pymemcache.exceptions import MemcacheUnknownError

from .errors import CacheMissError, CASConflictError, InvalidArgumentError
from .models import PERMANENT, Item

logger = logging.getLogger("memtui.cas")


@dataclass
class CASBinding:
    """Snapshot of a tokened read; the token is forwarded verbatim on write."""

    key: str
    token: bytes
    value: bytes
    flags: int
    expiration: int = PERMANENT


@dataclass
class CASItem:
    """An item that can be written back with ``compare_and_swap``.

    ``expiration`` uses set-time semantics: 0 never expires, up to 2592000 is
    relative seconds, anything larger is an absolute Unix timestamp. Reads do
    not report the stored expiration, so it starts at 0 and a CAS write with
    an untouched item makes it permanent.

    ``cas`` is informational; only ``binding`` is used on write, and an item
    without one cannot be swapped.
    """

    key: str
    value: bytes = b""
    flags: int = 0
    expiration: int = PERMANENT
    cas: int = 0
    binding: Optional[CASBinding] = field(default=None, repr=False, compare=False)

    @property
    def is_bound(self) -> bool:
        return self.binding is not None

    def to_item(self) -> Item:
        return Item(key=self.key, value=self.value, flags=self.flags, cas=self.cas)


def unpack_stored(stored: Any) -> tuple[bytes, int]:
    if isinstance(stored, tuple):
        value, flags = stored
        return value, int(flags)
    return stored, 0


def get_with_token(mc: Any, key: str) -> CASItem:
    stored, token = mc.gets(key)
    if token is None:
        raise CacheMissError(key)
    value, flags = unpack_stored(stored)
    try:
        cas_id = int(token)
    except (TypeError, ValueError):
        cas_id = 0
    binding = CASBinding(key=key, token=token, value=value, flags=flags)
    return CASItem(key=key, value=value, flags=flags, cas=cas_id, binding=binding)


def _is_not_stored(exc: MemcacheUnknownError) -> bool:
    reply = exc.args[0] if exc.args else b""
    if isinstance(reply, bytes):
        reply = reply.decode("ascii", errors="replace")
    return str(reply).strip() == "NOT_STORED"


def compare_and_swap(mc: Any, item: Optional[CASItem]) -> None:
    if item is None:
        raise InvalidArgumentError("CAS item cannot be None")
    binding = item.binding
    if binding is None:
        raise InvalidArgumentError("CAS item must be retrieved with get_with_token before compare_and_swap")

    binding.value = item.value
    binding.flags = item.flags
    binding.expiration = item.expiration

    # True: STORED. False: EXISTS. None: NOT_FOUND. NOT_STORED has no mapping
    # in pymemcache and arrives as MemcacheUnknownError.
    try:
        stored = mc.cas(
            binding.key,
            binding.value,
            binding.token,
            expire=binding.expiration,
            noreply=False,
            flags=binding.flags,
        )
    except MemcacheUnknownError as exc:
        if not _is_not_stored(exc):
            raise
        logger.debug("CAS on %s not stored", binding.key)
        raise CASConflictError(binding.key) from exc
    if stored is True:
        logger.debug("CAS stored %s", binding.key)
        return
    logger.debug("CAS conflict on %s (reply=%r)", binding.key, stored)
    raise CASConflictError(binding.key)
