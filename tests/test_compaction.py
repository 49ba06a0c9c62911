import pytest

from lsmkv.compaction import (
    Compaction,
    compact_output,
    max_bytes_for_level,
    pick_compaction,
    pick_compaction_level,
    total_file_size,
)
from lsmkv.key import InternalKey, KeyType
from lsmkv.memtable import Memtable
from lsmkv.metadata import FileMetaData
from lsmkv.version import Version


def _ikey(user_key, seq=1):
    return InternalKey(user_key, b"", seq, KeyType.VALUE)


def _meta(db, number, lo, hi, size=0):
    return FileMetaData(db, number, size, _ikey(lo), _ikey(hi))


def _write_table(version, records):
    mem = Memtable(1 << 30)
    for user_key, value in records:
        if value is None:
            mem.add(version.next_seq(), KeyType.DELETION, user_key, None)
        else:
            mem.add(version.next_seq(), KeyType.VALUE, user_key, value)
    version.write_level0_table(mem)


def _read_all(meta):
    out = []
    with meta.load() as table:
        it = table.iterator()
        while it.valid():
            out.append(InternalKey.decode(it.key()))
            it.next()
    return out


def test_max_bytes_for_level():
    assert max_bytes_for_level(1) == 10 * 1048576
    assert max_bytes_for_level(0) == max_bytes_for_level(1)
    assert max_bytes_for_level(3) == max_bytes_for_level(2) * 10


def test_total_file_size():
    files = [_meta("db", 1, b"a", b"b", 10), _meta("db", 2, b"c", b"d", 20)]
    assert total_file_size(files) == 30
    assert total_file_size([]) == 0


def test_trivial_move():
    m = _meta("db", 1, b"a", b"b")
    assert Compaction(1, ([m], [])).is_trivial_move()
    assert not Compaction(1, ([m], [m])).is_trivial_move()
    assert not Compaction(0, ([m, m], [])).is_trivial_move()


def test_str():
    c = Compaction(0, ([_meta("db", 1, b"a", b"b"), _meta("db", 2, b"a", b"b")], [_meta("db", 3, b"a", b"b")]))
    assert str(c) == "compaction,level:0\ninputs[0]:1,2,\ninputs[1]:3,\n"


def test_pick_level_none_until_over_trigger(tmp_path):
    v = Version(str(tmp_path))
    for n in range(4):
        v.add_file(0, _meta(v.db_name, n + 1, b"a", b"z"))
    assert pick_compaction_level(v) == -1
    assert pick_compaction(v) is None
    v.add_file(0, _meta(v.db_name, 5, b"a", b"z"))
    assert pick_compaction_level(v) == 0


def test_pick_level0_takes_all_and_overlaps(tmp_path):
    v = Version(str(tmp_path))
    for n in range(5):
        v.add_file(0, _meta(v.db_name, n + 1, b"c", b"f"))
    v.add_file(1, _meta(v.db_name, 10, b"a", b"b"))
    v.add_file(1, _meta(v.db_name, 11, b"d", b"e"))
    v.add_file(1, _meta(v.db_name, 12, b"x", b"y"))
    c = pick_compaction(v)
    assert c.level == 0
    assert [f.number for f in c.inputs[0]] == [1, 2, 3, 4, 5]
    assert [f.number for f in c.inputs[1]] == [11]


def test_pick_level1_respects_compact_pointer(tmp_path):
    v = Version(str(tmp_path))
    big = int(max_bytes_for_level(1))
    v.add_file(1, _meta(v.db_name, 1, b"a", b"c", big))
    v.add_file(1, _meta(v.db_name, 2, b"d", b"f", big))
    v.add_file(2, _meta(v.db_name, 3, b"e", b"g"))
    v.add_file(2, _meta(v.db_name, 4, b"a", b"b"))
    assert pick_compaction_level(v) == 1
    c = pick_compaction(v)
    assert [f.number for f in c.inputs[0]] == [1]
    assert [f.number for f in c.inputs[1]] == [4]
    v.compact_pointer[1] = _ikey(b"c").encode()
    c = pick_compaction(v)
    assert [f.number for f in c.inputs[0]] == [2]
    assert [f.number for f in c.inputs[1]] == [3]


def test_trivial_move_output_is_input(tmp_path):
    v = Version(str(tmp_path))
    m = _meta(v.db_name, 7, b"a", b"b")
    assert compact_output(v, Compaction(1, ([m], []))) == [m]


def test_compact_output_keeps_newest(tmp_path):
    v = Version(str(tmp_path))
    for round_ in range(5):
        _write_table(v, [(b"k%d" % i, b"v%d-%d" % (round_, i)) for i in range(round_, 10)])
    c = pick_compaction(v)
    outputs = compact_output(v, c)
    records = [ik for meta in outputs for ik in _read_all(meta)]
    keys = [ik.user_key for ik in records]
    assert keys == sorted(set(keys))
    assert keys == [b"k%d" % i for i in range(10)]
    for ik in records:
        i = int(ik.user_key[1:])
        assert ik.user_value == b"v%d-%d" % (min(i, 4), i)


def test_compact_output_splits_files(tmp_path):
    v = Version(str(tmp_path))
    for round_ in range(5):
        _write_table(v, [(b"key-%03d" % i, b"value" * 4) for i in range(round_ * 20, round_ * 20 + 20)])
    v.max_file_size = 100
    outputs = compact_output(v, pick_compaction(v))
    assert len(outputs) > 1
    for left, right in zip(outputs, outputs[1:]):
        assert left.largest.user_key < right.smallest.user_key
    total = sum(len(_read_all(m)) for m in outputs)
    assert total == 100
    assert len({m.number for m in outputs}) == len(outputs)


def test_compact_output_keeps_tombstones(tmp_path):
    v = Version(str(tmp_path))
    _write_table(v, [(b"a", b"1"), (b"b", b"2")])
    for _ in range(4):
        _write_table(v, [(b"a", None)])
    outputs = compact_output(v, pick_compaction(v))
    records = [ik for meta in outputs for ik in _read_all(meta)]
    assert [(ik.user_key, ik.kind) for ik in records] == [
        (b"a", KeyType.DELETION),
        (b"b", KeyType.VALUE),
    ]


def test_compact_output_missing_input(tmp_path):
    v = Version(str(tmp_path))
    c = Compaction(0, ([_meta(v.db_name, 40, b"a", b"b"), _meta(v.db_name, 41, b"a", b"b")], []))
    with pytest.raises(FileNotFoundError):
        compact_output(v, c)