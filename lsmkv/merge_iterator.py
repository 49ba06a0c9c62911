"""Merge several sorted table iterators into one sorted stream."""

from __future__ import annotations

import functools
import heapq
from typing import Iterator, Sequence

from lsmkv.key import compare_internal_keys
from lsmkv.sstable import SSTableIterator

_SORT_KEY = functools.cmp_to_key(compare_internal_keys)


class MergeIterator:
    """Yields the entries of all inputs in internal-key order."""

    def __init__(self, iterators: Sequence[SSTableIterator]) -> None:
        self._iterators = list(iterators)
        self._heap = [
            (_SORT_KEY(it.key()), idx)
            for idx, it in enumerate(self._iterators)
            if it.valid()
        ]
        heapq.heapify(self._heap)

    def valid(self) -> bool:
        return bool(self._heap)

    def key(self) -> bytes:
        if not self._heap:
            raise IndexError("merge iterator is exhausted")
        return self._iterators[self._heap[0][1]].key()

    def next(self) -> None:
        if not self._heap:
            raise IndexError("merge iterator is exhausted")
        _, idx = heapq.heappop(self._heap)
        source = self._iterators[idx]
        source.next()
        if source.valid():
            heapq.heappush(self._heap, (_SORT_KEY(source.key()), idx))

    def __iter__(self) -> Iterator[bytes]:
        while self.valid():
            yield self.key()
            self.next()