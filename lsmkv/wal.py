"""A write-ahead log made of numbered segment files."""

from __future__ import annotations

import logging
import os
import re
import threading
from typing import Iterator, Optional

from lsmkv.segment import (
    BLOCK_SIZE,
    CHUNK_HEADER_SIZE,
    DEFAULT_OPTIONS,
    ChunkPosition,
    Options,
    Segment,
    SegmentClosedError,
    SegmentError,
    SegmentReader,
)

_log = logging.getLogger(__name__)

INITIAL_SEGMENT_ID = 1
_SEGMENT_NAME = re.compile(r"(\d{1,16})\.seg")


class WAL:
    """An append-only log that rolls over to a new segment when one fills up."""

    def __init__(self, options: Options, segments: dict[int, Segment], active: Segment) -> None:
        self.options = options
        self._segments = segments
        self._active: Optional[Segment] = active
        self._lock = threading.RLock()

    @classmethod
    def open(cls, options: Options = DEFAULT_OPTIONS) -> WAL:
        """Open the log in ``options.directory``, creating it if needed."""
        directory = os.fspath(options.directory)
        os.makedirs(directory, exist_ok=True)
        ids: list[int] = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if not entry.is_file():
                    continue
                match = _SEGMENT_NAME.fullmatch(entry.name)
                if match:
                    ids.append(int(match.group(1)))

        if not ids:
            segment = Segment.open(directory, INITIAL_SEGMENT_ID, True)
            return cls(options, {INITIAL_SEGMENT_ID: segment}, segment)

        ids.sort()
        segments = {sid: Segment.open(directory, sid, False) for sid in ids}
        active = segments[ids[-1]]
        active.active = True
        return cls(options, segments, active)

    def __enter__(self) -> WAL:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _require_open(self) -> Segment:
        if self._active is None:
            raise SegmentClosedError()
        return self._active

    def reader(self, start: Optional[ChunkPosition] = None) -> WALReader:
        """Iterate records from the first position >= ``start`` (all when None).

        If no such position exists the reader starts at the end of the log.
        """
        with self._lock:
            self._require_open()
            readers = [self._segments[sid].reader() for sid in sorted(self._segments)]

            if start is None:
                start = ChunkPosition(readers[0].segment.id, 0, 0)

            index = next(
                (i for i, r in enumerate(readers) if r.segment.id >= start.segment_id),
                None,
            )
            if index is None:
                index = len(readers) - 1
                last = readers[index].segment
                segment_id, block_n, block_offset = (
                    last.id,
                    last.current_block_n,
                    last.current_block_size,
                )
            else:
                segment_id, block_n, block_offset = (
                    start.segment_id,
                    start.block_n,
                    start.block_offset,
                )
            # The requested segment may be gone; begin at the next one.
            if readers[index].segment.id > segment_id:
                block_n, block_offset = 0, 0

            current = readers[index]
            target = block_n * BLOCK_SIZE + block_offset
            while current.block_n * BLOCK_SIZE + current.block_offset < target:
                try:
                    next(current)
                except StopIteration:
                    break
            _log.debug(
                "reader starts at segment %d, block %d, offset %d",
                current.segment.id,
                current.block_n,
                current.block_offset,
            )
            return WALReader(readers, index)

    def write(self, data: bytes) -> ChunkPosition:
        """Append a record, rolling to a new segment if it would not fit."""
        with self._lock:
            active = self._require_open()
            if self._is_full(len(data)):
                self._cycle()
                active = self._active
            pos = active.write(data)
            _log.debug("write chunk position: %s", pos)
            if self.options.sync:
                try:
                    active.sync()
                except OSError:
                    _log.debug("sync failed, truncate to %s", pos)
                    active.truncate(pos.block_n, pos.block_offset)
                    raise
            return pos

    def read(self, pos: ChunkPosition) -> bytes:
        """Read the record at ``pos``."""
        with self._lock:
            self._require_open()
            segment = self._segments.get(pos.segment_id)
            if segment is None:
                raise SegmentError(f"segment {pos.segment_id} not found")
            return segment.read(pos.block_n, pos.block_offset)

    def sync(self) -> None:
        with self._lock:
            self._require_open().sync()

    def close(self) -> None:
        """Sync and close every segment; closing twice is harmless."""
        with self._lock:
            for segment in self._segments.values():
                segment.close()
            self._segments = {}
            self._active = None

    def _cycle(self) -> None:
        active = self._active
        active.sync()
        segment = Segment.open(self.options.directory, active.id + 1, True)
        active.active = False
        self._active = segment
        self._segments[segment.id] = segment

    def _is_full(self, data_len: int) -> bool:
        # Worst case: padding before the record plus one header per block.
        needed = data_len + CHUNK_HEADER_SIZE
        needed += (data_len + BLOCK_SIZE - 1) // BLOCK_SIZE * CHUNK_HEADER_SIZE
        return self._active.size() + needed > self.options.segment_size

    def is_empty(self) -> bool:
        with self._lock:
            active = self._require_open()
            return len(self._segments) == 1 and active.size() == 0

    def delete(self) -> None:
        """Close and remove every segment file."""
        with self._lock:
            for segment in self._segments.values():
                segment.remove()
            self._segments = {}
            self._active = None


class WALReader:
    """Yields ``(data, ChunkPosition)`` for each record across segments."""

    def __init__(self, readers: list[SegmentReader], index: int = 0) -> None:
        self._readers = readers
        self._index = index

    def __iter__(self) -> Iterator[tuple[bytes, ChunkPosition]]:
        return self

    def __next__(self) -> tuple[bytes, ChunkPosition]:
        while self._index < len(self._readers):
            try:
                return next(self._readers[self._index])
            except StopIteration:
                self._index += 1
        raise StopIteration

    def current_position(self) -> ChunkPosition:
        """Position of the next record the reader will return."""
        if not self._readers:
            raise SegmentClosedError()
        reader = self._readers[min(self._index, len(self._readers) - 1)]
        return ChunkPosition(reader.segment.id, reader.block_n, reader.block_offset)