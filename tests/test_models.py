"""Tests for metadump parsing, key helpers and the item model."""

import pytest

from memtui.errors import InvalidAddressError, InvalidArgumentError, MetadumpParseError
from memtui.models import (
    Item,
    KeyMetadata,
    SortOrder,
    filter_key_metadata,
    parse_metadump_line,
    socket_address,
    sort_key_metadata,
    split_address,
    validate_key_name,
)


def test_parse_metadump_line_decodes_key_and_fields():
    meta = parse_metadump_line("key=user%3A1 exp=0 la=1700000000 cas=7 fetch=yes cls=1 size=42")
    assert meta == KeyMetadata(
        key="user:1",
        expiration_unix=0,
        last_access_unix=1700000000,
        cas_id=7,
        fetched=True,
        slab_class=1,
        size_bytes=42,
    )
    assert meta.is_permanent


def test_parse_metadump_line_any_order_and_unknown_fields():
    meta = parse_metadump_line("size=17 foo=bar cls=3 key=user%3A2 exp=1700003600 fetch=no\r")
    assert meta.key == "user:2"
    assert meta.expiration_unix == 1700003600
    assert meta.slab_class == 3
    assert meta.size_bytes == 17
    assert meta.fetched is False
    assert meta.cas_id == 0


def test_parse_metadump_line_keeps_raw_key_on_bad_escape():
    assert parse_metadump_line("key=100%zz size=1").key == "100%zz"
    assert parse_metadump_line("key=%ff%fe size=1").key == "%ff%fe"


def test_parse_metadump_line_lenient_numbers():
    meta = parse_metadump_line("key=a exp=soon la=-5 cas=-1 cls=x size=-3")
    assert meta.expiration_unix == 0
    assert meta.last_access_unix == -5
    assert meta.cas_id == 0
    assert meta.slab_class == 0
    assert meta.size_bytes == 0

    huge = parse_metadump_line("key=a cas=18446744073709551615 size=99999999999999999999")
    assert huge.cas_id == 18446744073709551615
    assert huge.size_bytes == 0


@pytest.mark.parametrize("line", ["", "END", "exp=0 size=1", "key= size=1"])
def test_parse_metadump_line_rejects_lines_without_key(line):
    with pytest.raises(MetadumpParseError):
        parse_metadump_line(line)


def test_is_expired_at():
    assert not KeyMetadata(key="a").is_expired_at(now=2_000_000_000)
    meta = KeyMetadata(key="a", expiration_unix=1000)
    assert meta.is_expired_at(now=1001)
    assert not meta.is_expired_at(now=999)


def test_sort_and_filter_return_copies():
    keys = [
        KeyMetadata(key="b", size_bytes=5),
        KeyMetadata(key="a", size_bytes=9),
        KeyMetadata(key="c", size_bytes=5),
    ]
    assert [k.key for k in sort_key_metadata(keys)] == ["a", "b", "c"]
    assert [k.key for k in sort_key_metadata(keys, SortOrder.SIZE)] == ["b", "c", "a"]
    assert [k.key for k in keys] == ["b", "a", "c"]

    everything = filter_key_metadata(keys, "")
    assert everything == keys and everything is not keys
    assert [k.key for k in filter_key_metadata(keys, "a")] == ["a"]


@pytest.mark.parametrize(
    "address,expected",
    [
        ("localhost:11211", ("localhost", "11211")),
        ("10.0.0.1:1", ("10.0.0.1", "1")),
        ("[::1]:11211", ("::1", "11211")),
    ],
)
def test_split_address(address, expected):
    assert split_address(address) == expected


@pytest.mark.parametrize("address", ["", "localhost", ":11211", "localhost:", "local host:1"])
def test_split_address_rejects_malformed(address):
    with pytest.raises(InvalidAddressError):
        split_address(address)


def test_socket_address_converts_numeric_port():
    assert socket_address("cache:11211") == ("cache", 11211)


@pytest.mark.parametrize(
    "key",
    ["", "a b", "a\nb", "a\x00b", "a\tb", "k" * 251, "é" * 126],
)
def test_validate_key_name_rejects(key):
    with pytest.raises(InvalidArgumentError):
        validate_key_name(key)


def test_validate_key_name_accepts_printable_unicode():
    validate_key_name("user:1")
    validate_key_name("ключ")
    validate_key_name("k" * 250)


def test_item_refresh_ttl():
    item = Item(key="a", expiration=1000)
    item.refresh_ttl(now=900)
    assert (item.ttl_remaining, item.is_expired) == (100, False)
    item.refresh_ttl(now=1000)
    assert (item.ttl_remaining, item.is_expired) == (0, True)

    permanent = Item(key="p")
    permanent.refresh_ttl(now=5)
    assert (permanent.ttl_remaining, permanent.is_expired) == (-1, False)


def test_item_from_metadata():
    meta = KeyMetadata(key="a", cas_id=9, last_access_unix=10)
    item = Item.from_metadata(meta, b"xyz", flags=3)
    assert item.size == 3
    assert item.cas == 9
    assert item.flags == 3
    assert item.ttl_remaining == -1


@pytest.mark.parametrize("value", ["1_000", "+-1", "٣", "0x10", "1e3"])
def test_parse_metadump_line_rejects_non_decimal_numbers(value):
    meta = parse_metadump_line(f"key=a exp={value} size={value}")
    assert meta.expiration_unix == 0
    assert meta.size_bytes == 0


def test_parse_metadump_line_accepts_signed_decimal():
    meta = parse_metadump_line("key=a exp=+1700000000 la=-1")
    assert meta.expiration_unix == 1700000000
    assert meta.last_access_unix == -1
