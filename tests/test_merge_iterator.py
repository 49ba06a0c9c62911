import random

import pytest

from lsmkv.key import InternalKey, KeyType
from lsmkv.merge_iterator import MergeIterator
from lsmkv.sstable import SSTable, TableBuilder


def _open_tables(paths):
    return [SSTable.open(p) for p in paths]


def test_merge_iterator_basic(tmp_path):
    paths = [tmp_path / f"merge{i}.sst" for i in range(3)]
    builders = [TableBuilder(p) for p in paths]
    key_n = 100_000
    keys = [
        InternalKey(f"userkey-{i:09d}".encode(), f"uservalue-{i:09d}".encode(), i, KeyType.VALUE).encode()
        for i in range(key_n)
    ]
    rng = random.Random(1234)
    for k in keys:
        builders[rng.randrange(3)].add(k, None)
    for b in builders:
        b.finish()

    tables = _open_tables(paths)
    try:
        mi = MergeIterator([t.iterator() for t in tables])
        idx = 0
        while mi.valid():
            assert mi.key() == keys[idx]
            mi.next()
            idx += 1
        assert idx == key_n
    finally:
        for t in tables:
            t.close()


def test_merge_orders_same_user_key_by_seq(tmp_path):
    paths = [tmp_path / "a.sst", tmp_path / "b.sst"]
    older = InternalKey(b"k", b"old", 1).encode()
    newer = InternalKey(b"k", b"new", 5).encode()
    other = InternalKey(b"j", b"v", 3).encode()
    with TableBuilder(paths[0]) as b:
        b.add(older, None)
        b.finish()
    with TableBuilder(paths[1]) as b:
        b.add(other, None)
        b.add(newer, None)
        b.finish()

    tables = _open_tables(paths)
    try:
        merged = list(MergeIterator([t.iterator() for t in tables]))
        assert merged == [other, newer, older]
    finally:
        for t in tables:
            t.close()


def test_merge_of_nothing():
    mi = MergeIterator([])
    assert not mi.valid()
    with pytest.raises(IndexError):
        mi.key()
    with pytest.raises(IndexError):
        mi.next()


def test_merge_skips_empty_tables(tmp_path):
    empty = tmp_path / "empty.sst"
    full = tmp_path / "full.sst"
    TableBuilder(empty).finish()
    keys = [InternalKey(f"k{i}".encode(), b"", i).encode() for i in range(5)]
    with TableBuilder(full) as b:
        for k in keys:
            b.add(k, None)
        b.finish()
    tables = _open_tables([empty, full])
    try:
        assert list(MergeIterator([t.iterator() for t in tables])) == keys
    finally:
        for t in tables:
            t.close()