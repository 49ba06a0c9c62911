"""Write-ahead log segments: files of checksummed chunks laid out in fixed-size blocks."""

from __future__ import annotations

import enum
import logging
import os
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator

_log = logging.getLogger(__name__)

B = 1
KB = 1024 * B
MB = 1024 * KB
GB = 1024 * MB

# checksum (4) + length (2) + chunk type (1)
CHUNK_HEADER_SIZE = 7
MAX_CHUNK_SIZE = 0xFFFF
BLOCK_SIZE = 32 * KB
FILE_MODE = 0o644
FILE_NAME_FORMAT = "{:016d}.seg"

_HEADER = struct.Struct(">IHB")
_HEADER_TAIL = struct.Struct(">HB")


@dataclass(frozen=True)
class Options:
    """Settings of a write-ahead log."""

    directory: str = "./wal"
    segment_size: int = 1 * GB
    # Sync after every write; turning it off is faster but not durable.
    sync: bool = True


DEFAULT_OPTIONS = Options()


class ChunkType(enum.IntEnum):
    """Where a chunk sits within the record it belongs to."""

    FULL = 0
    FIRST = 1
    MIDDLE = 2
    LAST = 3

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ChunkPosition:
    """Location of a record: it starts at ``block_n * BLOCK_SIZE + block_offset``."""

    segment_id: int
    block_n: int
    block_offset: int
    size: int = 0


class SegmentError(Exception):
    """Base class of segment failures."""


class SegmentClosedError(SegmentError):
    """The segment has been closed."""

    def __init__(self) -> None:
        super().__init__("segment is closed")


class InvalidCRCError(SegmentError):
    """A chunk failed its checksum."""

    def __init__(self) -> None:
        super().__init__("invalid crc")


class ChunkTooBigError(SegmentError):
    """A chunk payload exceeds the largest encodable length."""

    def __init__(self) -> None:
        super().__init__("chunk is too big")


class InactiveSegmentError(SegmentError):
    """Only the active segment accepts writes."""

    def __init__(self) -> None:
        super().__init__("inactive segment can't write")


def segment_file_name(segment_id: int) -> str:
    """File name of the segment with the given id."""
    return FILE_NAME_FORMAT.format(segment_id)


def _encode_chunk(payload: bytes, chunk_type: ChunkType) -> bytes:
    if len(payload) > MAX_CHUNK_SIZE:
        raise ChunkTooBigError()
    tail = _HEADER_TAIL.pack(len(payload), int(chunk_type))
    checksum = zlib.crc32(payload, zlib.crc32(tail))
    return struct.pack(">I", checksum) + tail + payload


def _read_block(block: bytes, offset: int) -> tuple[bytes, int, bool]:
    """Read chunks from ``offset`` until a record ends or the block runs out.

    Returns the payload read, the bytes consumed including headers, and
    whether the record ended within this block.
    """
    data = bytearray()
    consumed = 0
    while True:
        if offset + CHUNK_HEADER_SIZE > len(block):
            return bytes(data), consumed, False
        saved, length, chunk_type = _HEADER.unpack_from(block, offset)
        end = offset + CHUNK_HEADER_SIZE + length
        if end > len(block) or zlib.crc32(block[offset + 4 : end]) != saved:
            _log.debug("checksum failed for chunk at %d", offset)
            raise InvalidCRCError()
        consumed += CHUNK_HEADER_SIZE + length
        data += block[offset + CHUNK_HEADER_SIZE : end]
        if chunk_type in (ChunkType.FULL, ChunkType.LAST):
            return bytes(data), consumed, True
        offset = end


class Segment:
    """One append-only log file."""

    def __init__(self, segment_id: int, path: str, fileobj: BinaryIO, size: int, active: bool) -> None:
        self.id = segment_id
        self.path = path
        self._file = fileobj
        # current_block_n * BLOCK_SIZE + current_block_size is the write position.
        self.current_block_n = size // BLOCK_SIZE
        self.current_block_size = size % BLOCK_SIZE
        self.closed = False
        self.active = active

    @classmethod
    def open(cls, directory: str | os.PathLike, segment_id: int, active: bool) -> Segment:
        """Open or create the segment file ``segment_id`` in ``directory``."""
        path = os.path.join(os.fspath(directory), segment_file_name(segment_id))
        fd = os.open(path, os.O_CREAT | os.O_RDWR | os.O_APPEND, FILE_MODE)
        fileobj = open(fd, "a+b", buffering=0)
        size = os.fstat(fileobj.fileno()).st_size
        return cls(segment_id, path, fileobj, size, active)

    def __enter__(self) -> Segment:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_writable(self) -> None:
        if self.closed:
            raise SegmentClosedError()
        if not self.active:
            raise InactiveSegmentError()

    def _layout(self, data: bytes) -> tuple[bytes, ChunkPosition, int, int]:
        """Encode ``data`` as chunks at the current position without moving it."""
        block_n, cur = self.current_block_n, self.current_block_size
        parts: list[bytes] = []
        if cur + CHUNK_HEADER_SIZE >= BLOCK_SIZE:
            # Not even a header fits in this block: pad it out.
            parts.append(bytes(BLOCK_SIZE - cur))
            block_n += 1
            cur = 0

        data_size = len(data)
        if cur + CHUNK_HEADER_SIZE + data_size <= BLOCK_SIZE:
            parts.append(_encode_chunk(data, ChunkType.FULL))
            size = CHUNK_HEADER_SIZE + data_size
        else:
            start = 0
            count = 0
            in_block = cur
            while True:
                end = min(data_size, start + BLOCK_SIZE - in_block - CHUNK_HEADER_SIZE)
                if start == 0:
                    chunk_type = ChunkType.FIRST
                elif end == data_size:
                    chunk_type = ChunkType.LAST
                else:
                    chunk_type = ChunkType.MIDDLE
                parts.append(_encode_chunk(data[start:end], chunk_type))
                count += 1
                in_block = (in_block + CHUNK_HEADER_SIZE + end - start) % BLOCK_SIZE
                start = end
                if chunk_type is ChunkType.LAST:
                    break
            size = CHUNK_HEADER_SIZE * count + data_size

        pos = ChunkPosition(self.id, block_n, cur, size)
        total = cur + size
        return b"".join(parts), pos, block_n + total // BLOCK_SIZE, total % BLOCK_SIZE

    def write(self, data: bytes) -> ChunkPosition:
        """Append a record and return where it starts."""
        self._check_writable()
        buffer, pos, block_n, block_size = self._layout(bytes(data))
        _log.debug("write %d bytes as %d bytes of chunks", len(data), len(buffer))
        self._file.write(buffer)
        self.current_block_n, self.current_block_size = block_n, block_size
        return pos

    def _pread(self, offset: int, size: int) -> bytes:
        self._file.seek(offset)
        chunks = bytearray()
        while len(chunks) < size:
            piece = self._file.read(size - len(chunks))
            if not piece:
                raise EOFError(f"short read at {offset}: wanted {size}, got {len(chunks)}")
            chunks += piece
        return bytes(chunks)

    def read(self, block_n: int, block_offset: int) -> bytes:
        """Read the record starting at the given position; EOFError past the end."""
        if self.closed:
            raise SegmentClosedError()
        result = bytearray()
        offset = block_offset
        while True:
            start = block_n * BLOCK_SIZE
            size = min(BLOCK_SIZE, self.size() - start)
            if size <= 0:
                raise EOFError("read past the end of the segment")
            data, _, end = _read_block(self._pread(start, size), offset)
            result += data
            if end:
                return bytes(result)
            block_n += 1
            offset = 0

    def reader(self) -> SegmentReader:
        """Iterator over every record from the start of the segment."""
        return SegmentReader(self)

    def sync(self) -> None:
        if self.closed:
            raise SegmentClosedError()
        os.fsync(self._file.fileno())

    def size(self) -> int:
        """Bytes written to the segment."""
        return self.current_block_n * BLOCK_SIZE + self.current_block_size

    def close(self) -> None:
        """Sync and close; closing twice is harmless."""
        if self.closed:
            return
        self.sync()
        self.closed = True
        self._file.close()

    def remove(self) -> None:
        """Close without syncing and delete the file."""
        if not self.closed:
            self.closed = True
            self._file.close()
        os.remove(self.path)

    def truncate(self, block_n: int, block_offset: int) -> None:
        """Drop everything after the given position."""
        self._check_writable()
        offset = block_n * BLOCK_SIZE + block_offset
        if offset > self.size():
            raise ValueError("invalid block_n or block_offset")
        _log.debug("truncate segment[%d] to %d", self.id, offset)
        self._file.truncate(offset)
        self.current_block_n = block_n
        self.current_block_size = block_offset


class SegmentReader:
    """Yields ``(data, ChunkPosition)`` for each record of a segment in order."""

    def __init__(self, segment: Segment) -> None:
        self.segment = segment
        self.block_n = 0
        self.block_offset = 0

    def __iter__(self) -> Iterator[tuple[bytes, ChunkPosition]]:
        return self

    def __next__(self) -> tuple[bytes, ChunkPosition]:
        seg = self.segment
        if seg.closed:
            raise SegmentClosedError()
        block_n, offset = self.block_n, self.block_offset
        result = bytearray()
        chunk_size = 0
        while True:
            start = block_n * BLOCK_SIZE
            size = min(BLOCK_SIZE, seg.size() - start)
            if size <= offset:
                raise StopIteration
            data, consumed, end = _read_block(seg._pread(start, size), offset)
            chunk_size += consumed
            offset += consumed
            result += data
            if end:
                break
            # The record continues in the next block.
            block_n += 1
            offset = 0

        pos = ChunkPosition(seg.id, self.block_n, self.block_offset, chunk_size)
        # Skip the padding that the writer leaves when a header no longer fits.
        if offset + CHUNK_HEADER_SIZE >= BLOCK_SIZE and block_n * BLOCK_SIZE + offset < seg.size():
            block_n += 1
            offset = 0
        self.block_n, self.block_offset = block_n, offset
        return bytes(result), pos