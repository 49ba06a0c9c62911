import struct

from lsmkv.filenames import (
    current_file_name,
    len_prefix,
    manifest_file_name,
    sstable_file_name,
    temp_file_name,
)


def test_current_file_name():
    assert current_file_name("db") == "db/CURRENT"


def test_manifest_file_name():
    assert manifest_file_name("db", 7) == "db/MANIFEST-000007"


def test_sstable_file_name():
    assert sstable_file_name("db", 12) == "db/000012.ldb"


def test_temp_file_name_shape():
    name = temp_file_name("mydb", 3)
    directory, base = name.split("/")
    number, suffix = base.split(".")
    assert directory == "mydb"
    assert suffix == "dbtmp"
    assert len(number) == 6
    assert int(number) == 3


def test_large_numbers_not_truncated():
    name = sstable_file_name("d", 12345678)
    assert int(name.split("/")[1].split(".")[0]) == 12345678


def test_len_prefix_round_trip():
    data = b"hello world"
    out = len_prefix(data)
    (length,) = struct.unpack_from("<I", out, 0)
    assert length == len(data)
    assert out[4:] == data


def test_len_prefix_empty():
    out = len_prefix(b"")
    assert len(out) == 4
    assert struct.unpack("<I", out)[0] == 0