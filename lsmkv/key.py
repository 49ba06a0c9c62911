"""Internal keys: a user key and value tagged with a sequence number and a kind."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


class KeyType(enum.IntEnum):
    """Whether a record stores a value or marks a deletion."""

    DELETION = 0
    VALUE = 1


@dataclass(frozen=True)
class InternalKey:
    """A user key/value pair with its sequence number and record kind."""

    user_key: bytes
    user_value: bytes = b""
    seq: int = 0
    kind: KeyType = KeyType.VALUE

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_key", bytes(self.user_key))
        object.__setattr__(self, "user_value", bytes(self.user_value or b""))
        object.__setattr__(self, "kind", KeyType(self.kind))

    def size(self) -> int:
        """Length of the encoded form in bytes."""
        return 4 + len(self.user_key) + 4 + len(self.user_value) + 8 + 1

    def encode(self) -> bytes:
        """Serialise as len(key), key, len(value), value, seq, kind (little endian)."""
        return b"".join(
            (
                _U32.pack(len(self.user_key)),
                self.user_key,
                _U32.pack(len(self.user_value)),
                self.user_value,
                _U64.pack(self.seq),
                bytes((int(self.kind),)),
            )
        )

    @classmethod
    def decode(cls, data: bytes) -> InternalKey:
        """Parse an encoded internal key; raise ValueError if malformed."""
        data = bytes(data)
        try:
            (key_len,) = _U32.unpack_from(data, 0)
            offset = 4
            user_key = data[offset : offset + key_len]
            offset += key_len
            (value_len,) = _U32.unpack_from(data, offset)
            offset += 4
            user_value = data[offset : offset + value_len]
            offset += value_len
            (seq,) = _U64.unpack_from(data, offset)
            offset += 8
            kind = data[offset]
            offset += 1
        except (struct.error, IndexError) as exc:
            raise ValueError("truncated internal key") from exc
        if offset != len(data):
            raise ValueError("trailing bytes after internal key")
        return cls(user_key, user_value, seq, KeyType(kind))

    def debug(self) -> str:
        """Human-readable description of the key."""
        key = self.user_key.decode("utf-8", "backslashreplace")
        value = self.user_value.decode("utf-8", "backslashreplace")
        return (
            f"InternalKey{{UserKey: {key}, UserValue: {value}, "
            f"Seq: {self.seq}, Type: {int(self.kind)}}}"
        )


def lookup_key(user_key: bytes, seq: int) -> InternalKey:
    """Build a key used to search for the newest record with seq <= ``seq``."""
    return InternalKey(user_key, b"", seq, KeyType.VALUE)


def _key_and_seq(data: bytes) -> tuple[bytes, int]:
    try:
        (key_len,) = _U32.unpack_from(data, 0)
        user_key = bytes(data[4 : 4 + key_len])
        (value_len,) = _U32.unpack_from(data, 4 + key_len)
        (seq,) = _U64.unpack_from(data, 8 + key_len + value_len)
    except struct.error as exc:
        raise ValueError("truncated internal key") from exc
    return user_key, seq


def compare_internal_keys(a: bytes, b: bytes) -> int:
    """Order encoded keys by user key ascending, then sequence descending."""
    a_key, a_seq = _key_and_seq(a)
    b_key, b_seq = _key_and_seq(b)
    if a_key != b_key:
        return -1 if a_key < b_key else 1
    if a_seq == b_seq:
        return 0
    return -1 if a_seq > b_seq else 1