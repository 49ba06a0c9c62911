"""A version: the set of table files, by level, at one point in time."""

from __future__ import annotations

import functools
import logging
import os
import struct
from bisect import bisect_left
from typing import BinaryIO, Optional

from lsmkv.compaction import compact_output, pick_compaction
from lsmkv.filenames import manifest_file_name, sstable_file_name
from lsmkv.key import InternalKey, KeyType, compare_internal_keys, lookup_key
from lsmkv.memtable import Memtable
from lsmkv.metadata import (
    DEFAULT_LEVELS,
    EMPTY_KEY,
    L0_COMPACTION_TRIGGER,
    L0_SLOWDOWN_WRITES_TRIGGER,
    MAX_SSTABLE_FILE_SIZE,
    FileMetaData,
)
from lsmkv.sstable import TableBuilder

__all__ = [
    "DEFAULT_LEVELS",
    "L0_COMPACTION_TRIGGER",
    "L0_SLOWDOWN_WRITES_TRIGGER",
    "MAX_SSTABLE_FILE_SIZE",
    "Version",
]

_log = logging.getLogger(__name__)
_SORT_KEY = functools.cmp_to_key(compare_internal_keys)
_U64 = struct.Struct("<Q")
_I32 = struct.Struct("<i")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError(f"manifest truncated: wanted {size} bytes, got {len(data)}")
    return data


class Version:
    """Table files organised by level, plus file-number and sequence counters."""

    def __init__(self, db_name: str | os.PathLike) -> None:
        os.makedirs(db_name, exist_ok=True)
        self.db_name = os.fspath(db_name)
        self.next_file_number = 1
        self.seq = 0
        self.files: list[list[FileMetaData]] = [[] for _ in range(DEFAULT_LEVELS)]
        # Per-level key at which the next compaction of that level starts.
        self.compact_pointer: list[Optional[bytes]] = [None] * DEFAULT_LEVELS
        self.max_file_size = MAX_SSTABLE_FILE_SIZE

    @classmethod
    def load(cls, db_name: str | os.PathLike, number: int) -> Version:
        """Read the version stored in manifest ``number``."""
        with open(manifest_file_name(os.fspath(db_name), number), "rb") as stream:
            version = cls(db_name)
            version._decode(stream)
        return version

    def save(self) -> int:
        """Write a new manifest and return its number."""
        number = self.next_file_number
        self.next_file_number += 1
        with open(manifest_file_name(self.db_name, number), "wb") as stream:
            stream.write(self._encode())
        return number

    def _encode(self) -> bytes:
        parts = [_U64.pack(self.next_file_number), _U64.pack(self.seq)]
        for files in self.files:
            parts.append(_I32.pack(len(files)))
            parts.extend(meta.encode() for meta in files)
        return b"".join(parts)

    def _decode(self, stream: BinaryIO) -> None:
        (self.next_file_number,) = _U64.unpack(_read_exact(stream, 8))
        (self.seq,) = _U64.unpack(_read_exact(stream, 8))
        for level in range(DEFAULT_LEVELS):
            (count,) = _I32.unpack(_read_exact(stream, 4))
            if count < 0:
                raise ValueError("negative file count in manifest")
            self.files[level] = [FileMetaData.decode(stream) for _ in range(count)]

    def add_file(self, level: int, meta: FileMetaData) -> None:
        """Add a table to ``level``; levels above 0 stay sorted by smallest key."""
        _log.debug(
            "addFile, level:%d, fileNumber:%d, [%r,%r]",
            level,
            meta.number,
            meta.smallest.user_key,
            meta.largest.user_key,
        )
        files = self.files[level]
        if level == 0:
            files.append(meta)
            return
        idx = bisect_left(
            files,
            _SORT_KEY(meta.smallest.encode()),
            key=lambda f: _SORT_KEY(f.smallest.encode()),
        )
        files.insert(idx, meta)

    def delete_file(self, level: int, meta: FileMetaData) -> None:
        """Remove the table with ``meta``'s number from ``level``."""
        self.files[level] = [f for f in self.files[level] if f.number != meta.number]

    def write_level0_table(self, imm: Memtable) -> FileMetaData:
        """Write a memtable out as a new level-0 table and return its description."""
        number = self.next_file_number
        self.next_file_number += 1
        smallest = largest = EMPTY_KEY
        with TableBuilder(sstable_file_name(self.db_name, number)) as builder:
            it = imm.iterator()
            it.seek_to_first()
            first = True
            while it.valid():
                raw = it.key()
                ik = InternalKey.decode(raw)
                if first:
                    smallest = ik
                    first = False
                largest = ik
                builder.add(raw, None)
                it.next()
            builder.finish()
        meta = FileMetaData(self.db_name, number, builder.file_size(), smallest, largest)
        self.add_file(0, meta)
        return meta

    def _search(self, meta: FileMetaData, lookup: InternalKey) -> tuple[bool, Optional[bytes]]:
        # Returns (found, value); a deletion is found with value None.
        with meta.load() as table:
            it = table.iterator()
            it.seek(lookup.encode())
            if not it.valid():
                return False, None
            found = InternalKey.decode(it.key())
        if found.user_key != lookup.user_key:
            return False, None
        if found.kind is KeyType.DELETION:
            return True, None
        return True, found.user_value

    def get(self, user_key: bytes, seq: int) -> Optional[bytes]:
        """Newest value of ``user_key`` visible at ``seq``; None if absent or deleted."""
        user_key = bytes(user_key)
        lookup = lookup_key(user_key, seq)
        try:
            # Level-0 files overlap; the most recently written one is searched first.
            for meta in reversed(self.files[0]):
                if user_key < meta.smallest.user_key or user_key > meta.largest.user_key:
                    continue
                found, value = self._search(meta, lookup)
                if found:
                    return value
            # Deeper levels are sorted and disjoint, so one file per level is enough.
            for files in self.files[1:]:
                idx = bisect_left(files, user_key, key=lambda f: f.largest.user_key)
                if idx == len(files):
                    continue
                found, value = self._search(files[idx], lookup)
                if found:
                    return value
        except OSError as exc:
            _log.error("load sstable error: %s", exc)
        return None

    def debug(self) -> str:
        """File numbers per level, one line per level."""
        lines = [
            f"level {level}: " + "".join(f"{f.number} " for f in files) + "\n"
            for level, files in enumerate(self.files)
        ]
        return "\n" + "".join(lines)

    def next_seq(self) -> int:
        """Advance and return the sequence number."""
        self.seq += 1
        return self.seq

    def num_level_files(self, level: int) -> int:
        return len(self.files[level])

    def copy(self) -> Version:
        """A copy whose file lists can change without affecting this one."""
        other = Version(self.db_name)
        other.next_file_number = self.next_file_number
        other.seq = self.seq
        other.files = [list(files) for files in self.files]
        other.compact_pointer = list(self.compact_pointer)
        other.max_file_size = self.max_file_size
        return other

    def compact(self) -> bool:
        """Run one major compaction; False if none was needed or it failed."""
        compaction = pick_compaction(self)
        if compaction is None:
            return False
        _log.debug("compact begin\n%s", compaction)
        try:
            outputs = compact_output(self, compaction)
        except (OSError, ValueError) as exc:
            _log.error("compaction failed: %s", exc)
            return False
        for meta in compaction.inputs[0]:
            self.delete_file(compaction.level, meta)
        for meta in compaction.inputs[1]:
            self.delete_file(compaction.level + 1, meta)
        for meta in outputs:
            self.add_file(compaction.level + 1, meta)
        return True