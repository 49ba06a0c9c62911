"""A skip list of byte keys ordered by a user comparison function."""

from __future__ import annotations

import random
from typing import Callable, Iterator, Optional

_MAX_LEVEL = 32
_P = 0.5

CompareFunc = Callable[[bytes, bytes], int]


class _Node:
    __slots__ = ("key", "next", "prev")

    def __init__(self, key: Optional[bytes], level: int) -> None:
        self.key = key
        self.next: list[Optional[_Node]] = [None] * level
        # Only the bottom level keeps a back link; it is used for iteration.
        self.prev: Optional[_Node] = None


class SkipList:
    """Sorted set of unique keys; ``compare`` returns <0, 0 or >0."""

    def __init__(self, compare: CompareFunc, *, rng: Optional[random.Random] = None) -> None:
        self._compare = compare
        self._head = _Node(None, _MAX_LEVEL)
        self._tail: Optional[_Node] = None
        self._rng = rng if rng is not None else random.Random()
        self._size = 0
        self._level = 1

    def _find_less_than(self, node: _Node, level: int, target: bytes) -> _Node:
        nxt = node.next[level]
        while nxt is not None and self._compare(nxt.key, target) < 0:
            node = nxt
            nxt = node.next[level]
        return node

    def _random_level(self) -> int:
        level = 1
        while level < _MAX_LEVEL and self._rng.random() < _P:
            level += 1
        return level

    def insert(self, key: bytes) -> None:
        """Insert ``key``; raise ValueError if an equal key is present."""
        prev = [self._head] * _MAX_LEVEL
        node = self._head
        for i in reversed(range(self._level)):
            node = self._find_less_than(node, i, key)
            nxt = node.next[i]
            if nxt is not None and self._compare(nxt.key, key) == 0:
                raise ValueError(f"key {key!r} already exists")
            prev[i] = node

        level = self._random_level()
        new = _Node(key, level)
        new.prev = prev[0]
        following = prev[0].next[0]
        if following is not None:
            following.prev = new
        for i, before in enumerate(prev[:level]):
            new.next[i] = before.next[i]
            before.next[i] = new

        if new.next[0] is None:
            self._tail = new
        self._level = max(self._level, level)
        self._size += 1

    def __contains__(self, key: bytes) -> bool:
        node = self._head
        for i in reversed(range(self._level)):
            node = self._find_less_than(node, i, key)
            nxt = node.next[i]
            if nxt is not None and self._compare(nxt.key, key) == 0:
                return True
        return False

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[bytes]:
        node = self._head.next[0]
        while node is not None:
            yield node.key
            node = node.next[0]

    def iterator(self) -> SkipListIterator:
        """A cursor positioned before the first key."""
        return SkipListIterator(self)

    def _level_repr(self, level: int) -> str:
        parts = [f"level {level}:head"]
        node = self._head.next[level]
        while node is not None:
            parts.append(f" -> {node.key!r}")
            node = node.next[level]
        parts.append(" -> nil")
        return "".join(parts)

    def __str__(self) -> str:
        lines = "".join(
            self._level_repr(i) + "\n" for i in reversed(range(self._level))
        )
        return f"[level={self._level},size={self._size}," + lines


class SkipListIterator:
    """Bidirectional cursor over a skip list."""

    def __init__(self, skiplist: SkipList) -> None:
        self._list = skiplist
        self._cur: Optional[_Node] = skiplist._head

    def valid(self) -> bool:
        return self._cur is not None and self._cur is not self._list._head

    def key(self) -> Optional[bytes]:
        """Current key, or None when the cursor is not on an entry."""
        return self._cur.key if self.valid() else None

    def next(self) -> None:
        if not self.valid():
            raise RuntimeError("iterator is not valid")
        self._cur = self._cur.next[0]

    def prev(self) -> None:
        if not self.valid():
            raise RuntimeError("iterator is not valid")
        self._cur = self._cur.prev

    def seek(self, target: bytes) -> None:
        """Move to the first key >= ``target``."""
        node = self._list._head
        for i in reversed(range(self._list._level)):
            node = self._list._find_less_than(node, i, target)
        self._cur = node.next[0]

    def seek_to_first(self) -> None:
        self._cur = self._list._head.next[0]

    def seek_to_last(self) -> None:
        self._cur = self._list._tail