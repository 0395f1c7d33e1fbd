"""Tests for optimistic updates with gets/cas."""

import pytest
from pymemcache.exceptions import MemcacheUnknownError

from memtui.cas import CASItem, compare_and_swap, get_with_token
from memtui.errors import CacheMissError, CASConflictError, InvalidArgumentError

from .fakes import FakeMemcache


def test_get_with_token_binds_snapshot():
    mc = FakeMemcache()
    mc.set("k", b"v1", flags=5)
    item = get_with_token(mc, "k")
    assert item.value == b"v1"
    assert item.flags == 5
    assert item.cas == mc.data["k"][2]
    assert item.is_bound
    assert item.binding.token == str(mc.data["k"][2]).encode()


def test_get_with_token_miss():
    with pytest.raises(CacheMissError):
        get_with_token(FakeMemcache(), "absent")


def test_compare_and_swap_stores_mutated_fields():
    mc = FakeMemcache()
    mc.set("k", b"v1", flags=1)
    item = get_with_token(mc, "k")
    item.value = b"v2"
    item.flags = 9
    item.expiration = 60
    compare_and_swap(mc, item)
    assert mc.get("k") == (b"v2", 9)
    assert mc.last_expire == 60


def test_compare_and_swap_conflict_after_external_write():
    mc = FakeMemcache()
    mc.set("k", b"v1")
    item = get_with_token(mc, "k")
    mc.set("k", b"v2")
    item.value = b"v3"
    with pytest.raises(CASConflictError) as excinfo:
        compare_and_swap(mc, item)
    assert excinfo.value.key == "k"
    assert mc.get("k") == (b"v2", 0)


def test_compare_and_swap_after_delete_is_conflict():
    mc = FakeMemcache()
    mc.set("k", b"v1")
    item = get_with_token(mc, "k")
    mc.delete("k")
    with pytest.raises(CASConflictError):
        compare_and_swap(mc, item)


def test_caller_supplied_cas_id_is_ignored():
    mc = FakeMemcache()
    mc.set("k", b"v1")
    item = get_with_token(mc, "k")
    mc.set("k", b"v2")
    item.cas = mc.data["k"][2]
    with pytest.raises(CASConflictError):
        compare_and_swap(mc, item)


def test_compare_and_swap_requires_binding():
    with pytest.raises(InvalidArgumentError):
        compare_and_swap(FakeMemcache(), CASItem(key="k", value=b"x", cas=123))
    with pytest.raises(InvalidArgumentError):
        compare_and_swap(FakeMemcache(), None)


def test_to_item_copies_visible_fields():
    mc = FakeMemcache()
    mc.set("k", b"abc", flags=2)
    item = get_with_token(mc, "k").to_item()
    assert (item.key, item.value, item.flags, item.size) == ("k", b"abc", 2, 3)


class _ReplyingMemcache(FakeMemcache):
    def __init__(self, reply: bytes):
        super().__init__()
        self.reply = reply

    def cas(self, key, value, cas, expire=0, noreply=None, flags=None):
        raise MemcacheUnknownError(self.reply)


def test_not_stored_reply_is_conflict():
    mc = _ReplyingMemcache(b"NOT_STORED")
    mc.set("k", b"v")
    item = get_with_token(mc, "k")
    with pytest.raises(CASConflictError) as excinfo:
        compare_and_swap(mc, item)
    assert isinstance(excinfo.value.__cause__, MemcacheUnknownError)


def test_other_unknown_reply_propagates():
    mc = _ReplyingMemcache(b"BUSY")
    mc.set("k", b"v")
    item = get_with_token(mc, "k")
    with pytest.raises(MemcacheUnknownError):
        compare_and_swap(mc, item)
