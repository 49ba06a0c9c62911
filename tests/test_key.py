import struct

import pytest

from lsmkv.key import InternalKey, KeyType, compare_internal_keys, lookup_key


def test_encode_pinned_layout():
    ik = InternalKey(b"k", b"v", 1, KeyType.VALUE)
    expected = b"\x01\x00\x00\x00k\x01\x00\x00\x00v" + struct.pack("<Q", 1) + b"\x01"
    assert ik.encode() == expected


def test_round_trip_and_size():
    ik = InternalKey(b"name", b"xiao ming", 42, KeyType.DELETION)
    data = ik.encode()
    assert len(data) == ik.size()
    assert InternalKey.decode(data) == ik


def test_none_value_is_empty():
    ik = InternalKey(b"name", None, 3, KeyType.DELETION)
    assert ik.user_value == b""
    assert InternalKey.decode(ik.encode()).user_value == b""


def test_lookup_key_fields():
    lk = lookup_key(b"age", 7)
    assert (lk.user_key, lk.user_value, lk.seq, lk.kind) == (b"age", b"", 7, KeyType.VALUE)


def test_decode_rejects_trailing_bytes():
    data = InternalKey(b"a", b"b", 1).encode() + b"\x00"
    with pytest.raises(ValueError):
        InternalKey.decode(data)


def test_decode_rejects_truncated():
    data = InternalKey(b"abc", b"def", 1).encode()
    with pytest.raises(ValueError):
        InternalKey.decode(data[:-3])


def test_compare_user_key_ascending():
    a = InternalKey(b"a", b"", 1).encode()
    b = InternalKey(b"b", b"", 1).encode()
    assert compare_internal_keys(a, b) < 0
    assert compare_internal_keys(b, a) > 0


def test_compare_seq_descending():
    newer = InternalKey(b"k", b"x", 5).encode()
    older = InternalKey(b"k", b"y", 2).encode()
    assert compare_internal_keys(newer, older) < 0
    assert compare_internal_keys(older, newer) > 0


def test_compare_ignores_value_and_kind():
    a = InternalKey(b"k", b"x", 5, KeyType.VALUE).encode()
    b = InternalKey(b"k", b"", 5, KeyType.DELETION).encode()
    assert compare_internal_keys(a, b) == 0


def test_compare_rejects_garbage():
    with pytest.raises(ValueError):
        compare_internal_keys(b"key1", InternalKey(b"k").encode())


def test_debug_format():
    ik = InternalKey(b"k", b"v", 1, KeyType.VALUE)
    assert ik.debug() == "InternalKey{UserKey: k, UserValue: v, Seq: 1, Type: 1}"