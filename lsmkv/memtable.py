"""In-memory table of recent writes, ordered by internal key."""

from __future__ import annotations

import logging
from typing import Optional

from lsmkv.key import InternalKey, KeyType, compare_internal_keys, lookup_key
from lsmkv.skiplist import SkipList, SkipListIterator

_log = logging.getLogger(__name__)


class Memtable:
    """Sorted store of encoded internal keys with a soft size limit."""

    def __init__(self, max_size: int) -> None:
        self._list = SkipList(compare_internal_keys)
        self._size = 0
        self.max_size = max_size

    @property
    def size(self) -> int:
        """Sum of the encoded sizes of all records added."""
        return self._size

    def add(
        self,
        seq: int,
        kind: KeyType,
        user_key: bytes,
        user_value: Optional[bytes],
    ) -> None:
        """Record a value or a deletion of ``user_key`` at sequence ``seq``."""
        ik = InternalKey(user_key, user_value or b"", seq, kind)
        self._list.insert(ik.encode())
        self._size += ik.size()

    def get(self, user_key: bytes, seq: int) -> Optional[bytes]:
        """Newest value of ``user_key`` visible at ``seq``; None if absent or deleted."""
        lookup = lookup_key(user_key, seq)
        it = self._list.iterator()
        it.seek(lookup.encode())
        if not it.valid():
            return None
        found = InternalKey.decode(it.key())
        _log.debug("memtable get, lookupKey=%s, exactKey=%s", lookup.debug(), found.debug())
        if found.user_key != bytes(user_key):
            return None
        if found.kind is KeyType.VALUE:
            return found.user_value
        return None

    def iterator(self) -> SkipListIterator:
        """Cursor over the encoded internal keys in order."""
        return self._list.iterator()

    def full(self) -> bool:
        return self._size >= self.max_size