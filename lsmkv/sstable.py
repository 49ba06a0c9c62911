"""Sorted string tables: immutable on-disk files of sorted internal keys."""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional

from lsmkv.block import Block, BlockBuilder, BlockHandle, BlockIterator
from lsmkv.key import InternalKey, KeyType

_log = logging.getLogger(__name__)

MAX_DATA_BLOCK_SIZE = 4 * 1024
MAGIC_NUMBER = 0xDB4775248B80FB57
_MAGIC = struct.Struct("<Q")


@dataclass(frozen=True)
class Footer:
    """Trailer of a table, pointing at its index block."""

    index_handle: BlockHandle = BlockHandle()

    SIZE = 16

    def encode(self) -> bytes:
        return self.index_handle.encode() + _MAGIC.pack(MAGIC_NUMBER)

    @classmethod
    def decode(cls, data: bytes) -> Footer:
        data = bytes(data)
        if len(data) < cls.SIZE:
            raise ValueError("footer needs 16 bytes")
        (magic,) = _MAGIC.unpack_from(data, 8)
        if magic != MAGIC_NUMBER:
            raise ValueError("invalid magic number")
        return cls(BlockHandle.decode(data[:8]))


class TableBuilder:
    """Writes sorted key/value pairs to a new table file."""

    def __init__(self, filename: str | os.PathLike) -> None:
        self._file: BinaryIO = open(filename, "wb")
        self._file_size = 0
        self._offset = 0
        self._data = BlockBuilder()
        # Each index entry maps a data block's largest key to its handle.
        self._index = BlockBuilder()
        self._pending: Optional[BlockHandle] = None
        self._max_key = b""

    def __enter__(self) -> TableBuilder:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self._file.closed:
            self._file.close()

    def _emit_pending(self) -> None:
        if self._pending is not None:
            self._index.add(self._max_key, self._pending.encode())
            self._pending = None

    def add(self, key: bytes, value: Optional[bytes]) -> None:
        """Append an entry; keys must arrive in ascending order."""
        self._emit_pending()
        self._max_key = bytes(key)
        self._data.add(key, value or b"")
        if self._data.size() >= MAX_DATA_BLOCK_SIZE:
            self._flush()

    def finish(self) -> None:
        """Write remaining data, the index block and the footer, then close."""
        self._flush()
        self._emit_pending()
        handle = self._write_block(self._index)
        footer = Footer(handle).encode()
        self._file.write(footer)
        self._file_size += len(footer)
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()

    def _flush(self) -> None:
        if self._data.empty():
            return
        self._pending = self._write_block(self._data)

    def _write_block(self, builder: BlockBuilder) -> BlockHandle:
        data = builder.finish()
        self._file.write(data)
        self._file_size += len(data)
        builder.reset()
        handle = BlockHandle(self._offset, len(data))
        self._offset += len(data)
        return handle

    def file_size(self) -> int:
        """Bytes written so far."""
        return self._file_size


class SSTable:
    """A table file opened for reading."""

    def __init__(self, fileobj: BinaryIO, index: Block) -> None:
        self._file = fileobj
        self.index = index

    @classmethod
    def open(cls, filename: str | os.PathLike) -> SSTable:
        fileobj = open(filename, "rb")
        try:
            size = os.fstat(fileobj.fileno()).st_size
            if size < Footer.SIZE:
                raise ValueError("file is too small to be a table")
            fileobj.seek(size - Footer.SIZE)
            footer = Footer.decode(fileobj.read(Footer.SIZE))
            index = Block.read(fileobj, footer.index_handle)
        except BaseException:
            fileobj.close()
            raise
        return cls(fileobj, index)

    def __enter__(self) -> SSTable:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._file.close()

    def _read_block(self, handle: BlockHandle) -> Block:
        return Block.read(self._file, handle)

    def get(self, lookup: InternalKey) -> Optional[bytes]:
        """Newest value for the lookup key's user key; None if absent or deleted."""
        it = self.iterator()
        it.seek(lookup.encode())
        if not it.valid():
            return None
        found = InternalKey.decode(it.key())
        _log.debug("sstable get, lookupKey=%s, internalKey=%s", lookup.debug(), found.debug())
        if found.user_key != lookup.user_key:
            return None
        if found.kind is KeyType.DELETION:
            return None
        return found.user_value

    def iterator(self) -> SSTableIterator:
        return SSTableIterator(self)


class SSTableIterator:
    """Cursor over every entry of a table, block by block."""

    def __init__(self, table: SSTable) -> None:
        self._table = table
        self._index_iter = table.index.iterator()
        self._data_iter: Optional[BlockIterator] = None
        if self._index_iter.valid():
            self._load_data_block()

    def _load_data_block(self) -> None:
        handle = BlockHandle.decode(self._index_iter.value())
        self._data_iter = self._table._read_block(handle).iterator()

    def seek(self, target: bytes) -> None:
        """Move to the first entry whose key is >= ``target``."""
        self._data_iter = None
        self._index_iter.seek(target)
        if not self._index_iter.valid():
            return
        self._load_data_block()
        self._data_iter.seek(target)

    def valid(self) -> bool:
        return (
            self._index_iter.valid()
            and self._data_iter is not None
            and self._data_iter.valid()
        )

    def key(self) -> bytes:
        if not self.valid():
            raise IndexError("table iterator is not positioned on an entry")
        return self._data_iter.key()

    def value(self) -> bytes:
        if not self.valid():
            raise IndexError("table iterator is not positioned on an entry")
        return self._data_iter.value()

    def next(self) -> None:
        if self._data_iter is None:
            raise IndexError("table iterator is not positioned on an entry")
        self._data_iter.next()
        if not self._data_iter.valid():
            self._index_iter.next()
            if self._index_iter.valid():
                self._load_data_block()