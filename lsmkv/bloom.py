"""A Bloom filter over byte strings using FNV-1a hashing."""

from __future__ import annotations

import math

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK64 = 0xFFFFFFFFFFFFFFFF


def _fnv1a64(data: bytes, start: int = _FNV_OFFSET) -> int:
    h = start
    for byte in data:
        h = ((h ^ byte) * _FNV_PRIME) & _MASK64
    return h


class Bloom:
    """Bloom filter sized for ``n`` expected items at false-positive rate ``p``."""

    def __init__(self, n: int, p: float) -> None:
        if n <= 0:
            raise ValueError("expected item count must be positive")
        if not 0.0 < p < 1.0:
            raise ValueError("false-positive rate must be between 0 and 1")
        m = int(-(n * math.log(p)) / (math.log(2) * math.log(2)))
        if m == 0:
            raise ValueError("filter would have no bits")
        self.m = m
        self.k = int((m / n) * math.log(2))
        self._bits = bytearray((m + 7) // 8)

    def _positions(self, key: bytes) -> list[int]:
        base = _fnv1a64(key)
        return [
            (((base ^ (i & 0xFF)) * _FNV_PRIME) & _MASK64) % self.m
            for i in range(self.k)
        ]

    def add(self, key: bytes) -> None:
        """Record ``key`` in the filter."""
        for idx in self._positions(key):
            self._bits[idx // 8] |= 1 << (idx % 8)

    def contains(self, key: bytes) -> bool:
        """Return False if ``key`` was surely never added."""
        return all(
            self._bits[idx // 8] & (1 << (idx % 8)) for idx in self._positions(key)
        )

    def __contains__(self, key: bytes) -> bool:
        return self.contains(key)