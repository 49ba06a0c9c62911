import pytest

from lsmkv.segment import (
    KB,
    MB,
    ChunkPosition,
    Options,
    SegmentClosedError,
    SegmentError,
)
from lsmkv.wal import WAL


@pytest.fixture
def options(tmp_path):
    return Options(directory=str(tmp_path / "wal"), segment_size=32 * MB, sync=False)


@pytest.fixture
def wal(options):
    log = WAL.open(options)
    yield log
    log.close()


def write_and_iterate(wal, size, value_size):
    val = b"wal" * value_size
    positions = [wal.write(val) for _ in range(size)]
    count = 0
    for data, pos in wal.reader(None):
        assert data == val
        assert pos == positions[count]
        count += 1
    assert count == size
    return positions


def test_write_and_read(tmp_path):
    log = WAL.open(Options(directory=str(tmp_path / "w"), segment_size=32 * MB, sync=True))
    try:
        pos1 = log.write(b"hello1")
        pos2 = log.write(b"hello2")
        pos3 = log.write(b"hello3")
        assert log.read(pos1) == b"hello1"
        assert log.read(pos2) == b"hello2"
        assert log.read(pos3) == b"hello3"
    finally:
        log.close()


def test_write_large(wal):
    write_and_iterate(wal, 2000, 512)


def test_write_large_records(wal):
    write_and_iterate(wal, 20, 32 * 1024 * 3 + 10)


def test_is_empty(wal):
    assert wal.is_empty()
    write_and_iterate(wal, 200, 512)
    assert not wal.is_empty()


def test_reader_survives_reopen(options):
    size = 500
    val = b"wal" * 512
    log = WAL.open(options)
    for _ in range(size):
        log.write(val)

    def validate(w):
        reader = w.reader(None)
        count = 0
        for chunk, position in reader:
            assert chunk == val
            assert position.segment_id == reader.current_position().segment_id
            count += 1
        assert count == size

    validate(log)
    log.close()

    reopened = WAL.open(options)
    try:
        validate(reopened)
    finally:
        reopened.close()


def test_delete(options):
    log = WAL.open(options)
    write_and_iterate(log, 200, 512)
    assert not log.is_empty()
    log.delete()

    reopened = WAL.open(options)
    try:
        assert reopened.is_empty()
    finally:
        reopened.close()


def test_reader_with_start(wal):
    reader1 = wal.reader(ChunkPosition(segment_id=0, block_n=0, block_offset=100))
    assert reader1.current_position() == ChunkPosition(1, 0, 0)
    with pytest.raises(StopIteration):
        next(reader1)

    count = 1000
    b = b"wal" * 512
    positions = [wal.write(b) for _ in range(count)]

    reader2 = wal.reader(None)
    assert reader2.current_position() == ChunkPosition(1, 0, 0)
    seen = 0
    for data, pos in reader2:
        assert data == b
        assert pos == positions[seen]
        seen += 1
    assert seen == count


def test_reader_from_middle(wal):
    positions = [wal.write(b"record-%d" % i) for i in range(50)]
    reader = wal.reader(positions[20])
    records = list(reader)
    assert [pos for _, pos in records] == positions[20:]
    assert records[0][0] == b"record-20"


def test_reader_past_end_is_empty(wal):
    for i in range(10):
        wal.write(b"x%d" % i)
    reader = wal.reader(ChunkPosition(99, 0, 0))
    assert list(reader) == []


def test_rotation_across_segments(tmp_path):
    opts = Options(directory=str(tmp_path / "rot"), segment_size=64 * KB, sync=False)
    log = WAL.open(opts)
    try:
        val = b"wal" * 512
        positions = [log.write(val) for _ in range(100)]
        ids = [p.segment_id for p in positions]
        assert ids == sorted(ids)
        assert ids[-1] > ids[0]
        assert all(log.read(p) == val for p in positions)
        assert [p for _, p in log.reader()] == positions
    finally:
        log.close()

    reopened = WAL.open(opts)
    try:
        assert [p for _, p in reopened.reader()] == positions
        new_pos = reopened.write(b"tail")
        assert new_pos.segment_id >= positions[-1].segment_id
        assert reopened.read(new_pos) == b"tail"
    finally:
        reopened.close()


def test_read_missing_segment(wal):
    wal.write(b"data")
    with pytest.raises(SegmentError):
        wal.read(ChunkPosition(42, 0, 0))


def test_write_after_close(options):
    log = WAL.open(options)
    log.close()
    with pytest.raises(SegmentClosedError):
        log.write(b"late")