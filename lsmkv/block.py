"""Blocks of length-prefixed key/value pairs and their builder."""

from __future__ import annotations

import functools
import struct
from bisect import bisect_left
from dataclasses import dataclass
from typing import BinaryIO, Iterator

from lsmkv.key import compare_internal_keys

_U32 = struct.Struct("<I")
_HANDLE = struct.Struct("<II")
_SORT_KEY = functools.cmp_to_key(compare_internal_keys)


@dataclass(frozen=True)
class BlockHandle:
    """Location of a block within a file."""

    offset: int = 0
    size: int = 0

    def encode(self) -> bytes:
        return _HANDLE.pack(self.offset, self.size)

    @classmethod
    def decode(cls, data: bytes) -> BlockHandle:
        try:
            offset, size = _HANDLE.unpack_from(data, 0)
        except struct.error as exc:
            raise ValueError("block handle needs 8 bytes") from exc
        return cls(offset, size)


def _read_slice(data: bytes, offset: int, end: int) -> tuple[bytes, int]:
    try:
        (length,) = _U32.unpack_from(data, offset)
    except struct.error as exc:
        raise ValueError("truncated block entry") from exc
    start = offset + 4
    stop = start + length
    if stop > end:
        raise ValueError("block entry runs past the end of the block")
    return data[start:stop], stop


class Block:
    """An immutable, decoded block of key/value pairs."""

    def __init__(self, keys: list[bytes], values: list[bytes]) -> None:
        self._keys = list(keys)
        self._values = list(values)

    @classmethod
    def from_bytes(cls, data: bytes) -> Block:
        """Decode a block produced by :meth:`BlockBuilder.finish`."""
        data = bytes(data)
        if len(data) < 4:
            raise ValueError("block is too short")
        body_end = len(data) - 4
        (count,) = _U32.unpack_from(data, body_end)
        keys: list[bytes] = []
        values: list[bytes] = []
        offset = 0
        for _ in range(count):
            key, offset = _read_slice(data, offset, body_end)
            value, offset = _read_slice(data, offset, body_end)
            keys.append(key)
            values.append(value)
        return cls(keys, values)

    @classmethod
    def read(cls, fileobj: BinaryIO, handle: BlockHandle) -> Block:
        """Read and decode the block at ``handle`` from a binary file."""
        fileobj.seek(handle.offset)
        data = fileobj.read(handle.size)
        if len(data) != handle.size:
            raise EOFError(
                f"short read: wanted {handle.size} bytes at {handle.offset}, got {len(data)}"
            )
        return cls.from_bytes(data)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return iter(zip(self._keys, self._values))

    def iterator(self) -> BlockIterator:
        return BlockIterator(self)


class BlockIterator:
    """Positional cursor over a block's entries."""

    def __init__(self, block: Block) -> None:
        self._block = block
        self._index = 0

    def rewind(self) -> None:
        self._index = 0

    def seek(self, target: bytes) -> None:
        """Move to the first entry whose internal key is >= ``target``."""
        self._index = bisect_left(self._block._keys, _SORT_KEY(target), key=_SORT_KEY)

    def next(self) -> None:
        self._index += 1

    def prev(self) -> None:
        self._index -= 1

    def valid(self) -> bool:
        return 0 <= self._index < len(self._block._keys)

    def key(self) -> bytes:
        if not self.valid():
            raise IndexError("block iterator is not positioned on an entry")
        return self._block._keys[self._index]

    def value(self) -> bytes:
        if not self.valid():
            raise IndexError("block iterator is not positioned on an entry")
        return self._block._values[self._index]


class BlockBuilder:
    """Accumulates key/value pairs into the block wire format."""

    def __init__(self) -> None:
        self._buf = bytearray()
        self._counter = 0

    def add(self, key: bytes, value: bytes) -> None:
        key = bytes(key or b"")
        value = bytes(value or b"")
        self._buf += _U32.pack(len(key))
        self._buf += key
        self._buf += _U32.pack(len(value))
        self._buf += value
        self._counter += 1

    def finish(self) -> bytes:
        """Append the entry count and return the encoded block."""
        self._buf += _U32.pack(self._counter)
        return bytes(self._buf)

    def reset(self) -> None:
        self._counter = 0
        self._buf.clear()

    def size(self) -> int:
        return len(self._buf)

    def empty(self) -> bool:
        return not self._buf