# lsmkv

A small key-value store built on a log-structured merge tree, in pure Python
with no third-party dependencies. Keys and values are `bytes`.

## Modules

- `lsmkv.key`: `InternalKey` (user key, value, sequence number and a
  `KeyType` of `VALUE` or `DELETION`), its binary `encode`/`decode`, and
  `compare_internal_keys`, which orders encoded keys by user key ascending and
  sequence number descending. `lookup_key(user_key, seq)` builds a search key.
- `lsmkv.skiplist`: `SkipList`, a sorted set of unique byte keys under a
  comparison function, with a bidirectional `SkipListIterator`.
- `lsmkv.memtable`: `Memtable`, the in-memory write buffer, backed by a skip
  list, with a soft size limit (`full()`).
- `lsmkv.block`: `BlockBuilder`, `Block`, `BlockIterator` and `BlockHandle`
  for blocks of length-prefixed key/value pairs.
- `lsmkv.sstable`: `TableBuilder` writes sorted tables (4 KiB data blocks, an
  index block keyed by each data block's largest key, and a 16-byte `Footer`
  carrying a magic number); `SSTable.open` reads them, with `get` and an
  `SSTableIterator`.
- `lsmkv.merge_iterator`: `MergeIterator` merges several table iterators into
  one stream in internal-key order.
- `lsmkv.metadata`: `FileMetaData`, describing one table file and its key
  range, plus level constants (`DEFAULT_LEVELS = 7`,
  `L0_COMPACTION_TRIGGER = 4`, `L0_SLOWDOWN_WRITES_TRIGGER = 8`).
- `lsmkv.compaction`: choosing a level and files to compact, and merging them
  into new tables that keep only the newest record of each user key.
- `lsmkv.version`: `Version`, the live tables by level; flushing a memtable to
  level 0 (`write_level0_table`), lookups (`get`), major compaction
  (`compact`) and saving/loading manifest files (`save`, `Version.load`).
- `lsmkv.segment` and `lsmkv.wal`: a write-ahead log of CRC-checked chunks laid
  out in 32 KiB blocks; records larger than a block are split across blocks,
  and the log rolls over to a new segment file when one reaches its size limit.
- `lsmkv.bloom`: `Bloom`, a Bloom filter sized from an expected item count and
  false-positive rate.
- `lsmkv.db`: `DB`, which ties the memtable and versions together.

## Usage

```python
from lsmkv.db import DB

with DB.open("mydb") as db:
    db.put(b"name", b"alice")
    db.get(b"name")          # b"alice"
    db.delete(b"name")
    db.get(b"name")          # None
```

`DB.get(user_key, seq)` returns the newest value whose sequence number is at
most `seq`; `seq` defaults to the largest 64-bit value, so it reads the latest
state. A missing or deleted key gives `None`.

When the 1 KiB memtable fills, it is frozen and a background thread writes it
as a level-0 table, runs any compactions that are due, saves a new manifest and
points the `CURRENT` file at it. `DB.open` reloads that manifest.
`DB.close()` (or leaving the `with` block) waits for background work to end.

### Sorted tables

```python
from lsmkv.key import InternalKey, lookup_key
from lsmkv.sstable import SSTable, TableBuilder

with TableBuilder("example.sst") as builder:
    builder.add(InternalKey(b"a", b"1", 1).encode(), None)
    builder.add(InternalKey(b"b", b"2", 2).encode(), None)
    builder.finish()

with SSTable.open("example.sst") as table:
    table.get(lookup_key(b"b", 2**64 - 1))   # b"2"
```

### Write-ahead log

```python
from lsmkv.segment import Options
from lsmkv.wal import WAL

with WAL.open(Options(directory="./wal", segment_size=32 * 1024 * 1024)) as wal:
    pos = wal.write(b"hello")
    assert wal.read(pos) == b"hello"
    for data, position in wal.reader():
        ...
```

`Options.sync` (default `True`) syncs the segment after every write.
`wal.reader(start)` begins at the first record at or after a `ChunkPosition`.

### Bloom filter

```python
from lsmkv.bloom import Bloom

bloom = Bloom(10_000, 0.001)
bloom.add(b"key")
b"key" in bloom   # True
```

## What it does not do

- `DB` does not write to the write-ahead log: records still in the memtable
  when the process ends are lost. The log in `lsmkv.wal` is a separate piece.
- There are no snapshots, range scans over the whole database, or
  configuration of memtable or table sizes through `DB.open`.
- There is no command-line tool and no network server; it is a library.

## Tests

```
pip install -e .[test]
pytest
```