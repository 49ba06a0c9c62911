"""Names of the files that make up a database directory."""

from __future__ import annotations

import struct


def current_file_name(dbname: str) -> str:
    """Path of the CURRENT file."""
    return f"{dbname}/CURRENT"


def manifest_file_name(dbname: str, number: int) -> str:
    """Path of the manifest with the given number."""
    return f"{dbname}/MANIFEST-{number:06d}"


def _file_name(dbname: str, number: int, suffix: str) -> str:
    return f"{dbname}/{number:06d}.{suffix}"


def sstable_file_name(dbname: str, number: int) -> str:
    """Path of the sorted table with the given number."""
    return _file_name(dbname, number, "ldb")


def temp_file_name(dbname: str, number: int) -> str:
    """Path of a temporary file with the given number."""
    return _file_name(dbname, number, "dbtmp")


def len_prefix(data: bytes) -> bytes:
    """Prefix ``data`` with its length as a little-endian uint32."""
    return struct.pack("<I", len(data)) + bytes(data)