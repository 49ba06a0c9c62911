"""Descriptions of the table files that make up a version, and level limits."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO

from lsmkv.filenames import len_prefix, sstable_file_name
from lsmkv.key import InternalKey, KeyType
from lsmkv.sstable import SSTable

DEFAULT_LEVELS = 7
# Number of level-0 files at which a compaction is started.
L0_COMPACTION_TRIGGER = 4
# Number of level-0 files at which writes are slowed down.
L0_SLOWDOWN_WRITES_TRIGGER = 8
MAX_SSTABLE_FILE_SIZE = 1 << 30

EMPTY_KEY = InternalKey(b"", b"", 0, KeyType.DELETION)

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"wanted {size} bytes, got {len(data)}")
    return data


def _read_prefixed(stream: BinaryIO) -> bytes:
    (length,) = _U32.unpack(_read_exact(stream, 4))
    return _read_exact(stream, length)


@dataclass
class FileMetaData:
    """A table file on disk together with the key range it holds."""

    db_name: str
    number: int
    file_size: int = 0
    smallest: InternalKey = EMPTY_KEY
    largest: InternalKey = EMPTY_KEY
    allow_seeks: int = 0

    def size(self) -> int:
        """Length of the encoded form in bytes."""
        return (
            8
            + 4
            + len(self.db_name.encode("utf-8"))
            + 8
            + 8
            + 4
            + self.smallest.size()
            + 4
            + self.largest.size()
        )

    def encode(self) -> bytes:
        """Serialise for storage in a manifest."""
        return b"".join(
            (
                _U64.pack(self.allow_seeks),
                len_prefix(self.db_name.encode("utf-8")),
                _U64.pack(self.number),
                _U64.pack(self.file_size),
                len_prefix(self.smallest.encode()),
                len_prefix(self.largest.encode()),
            )
        )

    @classmethod
    def decode(cls, stream: BinaryIO) -> FileMetaData:
        """Read one encoded entry from a binary stream; EOFError if it is cut short."""
        (allow_seeks,) = _U64.unpack(_read_exact(stream, 8))
        db_name = _read_prefixed(stream).decode("utf-8")
        (number,) = _U64.unpack(_read_exact(stream, 8))
        (file_size,) = _U64.unpack(_read_exact(stream, 8))
        smallest = InternalKey.decode(_read_prefixed(stream))
        largest = InternalKey.decode(_read_prefixed(stream))
        return cls(db_name, number, file_size, smallest, largest, allow_seeks)

    def load(self) -> SSTable:
        """Open the table file this entry describes."""
        return SSTable.open(sstable_file_name(self.db_name, self.number))