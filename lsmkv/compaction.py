"""Choosing and performing merges of table files between levels."""

from __future__ import annotations

import contextlib
import functools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Iterator, Optional, Sequence

from lsmkv.filenames import sstable_file_name
from lsmkv.key import InternalKey, compare_internal_keys
from lsmkv.merge_iterator import MergeIterator
from lsmkv.metadata import L0_COMPACTION_TRIGGER, FileMetaData
from lsmkv.sstable import TableBuilder

if TYPE_CHECKING:
    from lsmkv.version import Version

_SORT_KEY = functools.cmp_to_key(compare_internal_keys)


@dataclass
class Compaction:
    """Merge of ``inputs[0]`` at ``level`` with ``inputs[1]`` at ``level + 1``."""

    level: int
    inputs: tuple[list[FileMetaData], list[FileMetaData]] = field(
        default_factory=lambda: ([], [])
    )

    def is_trivial_move(self) -> bool:
        """True when a single file can move down a level without rewriting."""
        return len(self.inputs[0]) == 1 and not self.inputs[1]

    def __str__(self) -> str:
        first = "".join(f"{f.number}," for f in self.inputs[0])
        second = "".join(f"{f.number}," for f in self.inputs[1])
        return (
            f"compaction,level:{self.level}\n"
            f"inputs[0]:{first}\n"
            f"inputs[1]:{second}\n"
        )


def total_file_size(files: Iterable[FileMetaData]) -> int:
    """Sum of the sizes of ``files``."""
    return sum(f.file_size for f in files)


def max_bytes_for_level(level: int) -> float:
    """Byte budget of a level; levels 0 and 1 share 10 MiB, each further level x10."""
    result = 10.0 * 1048576.0
    while level > 1:
        result *= 10
        level -= 1
    return result


def pick_compaction_level(version: Version) -> int:
    """Level most in need of compaction, or -1 when none is over its limit."""
    # Level 0 is bounded by file count since its files are merged on every read.
    best_level = -1
    best_score = 1.0
    for level in range(len(version.files) - 1):
        files = version.files[level]
        if level == 0:
            score = len(files) / L0_COMPACTION_TRIGGER
        else:
            score = total_file_size(files) / max_bytes_for_level(level)
        if score > best_score:
            best_score = score
            best_level = level
    return best_level


def pick_compaction(version: Version) -> Optional[Compaction]:
    """Choose the files to merge next, or None if nothing needs compacting."""
    level = pick_compaction_level(version)
    if level < 0:
        return None
    compaction = Compaction(level)
    inputs0, inputs1 = compaction.inputs

    if level == 0:
        # Level-0 files may overlap each other, so all of them take part.
        inputs0.extend(version.files[0])
        smallest = min((f.smallest.encode() for f in inputs0), key=_SORT_KEY)
        largest = max((f.largest.encode() for f in inputs0), key=_SORT_KEY)
    else:
        pointer = version.compact_pointer[level]
        files = version.files[level]
        chosen = next(
            (
                f
                for f in files
                if pointer is None or compare_internal_keys(f.largest.encode(), pointer) > 0
            ),
            files[0],
        )
        inputs0.append(chosen)
        smallest = chosen.smallest.encode()
        largest = chosen.largest.encode()

    inputs1.extend(
        f
        for f in version.files[level + 1]
        if not (
            compare_internal_keys(f.largest.encode(), smallest) < 0
            or compare_internal_keys(f.smallest.encode(), largest) > 0
        )
    )
    return compaction


def _newest_per_user_key(entries: Iterable[bytes]) -> Iterator[tuple[bytes, InternalKey]]:
    # Entries arrive by user key ascending and sequence descending, so the
    # first record of each user key is the newest one.
    last: Optional[bytes] = None
    for raw in entries:
        ik = InternalKey.decode(raw)
        if last is not None:
            if ik.user_key == last:
                continue
            if ik.user_key < last:
                raise RuntimeError(
                    f"merge produced keys out of order: {last!r} before {ik.user_key!r}"
                )
        last = ik.user_key
        yield raw, ik


def compact_output(version: Version, compaction: Compaction) -> list[FileMetaData]:
    """Merge the compaction's inputs into new table files and describe them."""
    if compaction.is_trivial_move():
        return list(compaction.inputs[0])

    inputs: Sequence[FileMetaData] = [*compaction.inputs[0], *compaction.inputs[1]]
    outputs: list[FileMetaData] = []
    with contextlib.ExitStack() as stack:
        tables = [stack.enter_context(meta.load()) for meta in inputs]
        merged = MergeIterator([table.iterator() for table in tables])

        builder: Optional[TableBuilder] = None
        number = 0
        smallest = largest = None
        for raw, ik in _newest_per_user_key(merged):
            if builder is None:
                number = version.next_file_number
                version.next_file_number += 1
                builder = stack.enter_context(
                    TableBuilder(sstable_file_name(version.db_name, number))
                )
                smallest = ik
            builder.add(raw, None)
            largest = ik
            # The running size is an estimate; the final file is larger.
            if builder.file_size() > version.max_file_size:
                builder.finish()
                outputs.append(_output_meta(version, number, builder, smallest, largest))
                builder = None
        if builder is not None:
            builder.finish()
            outputs.append(_output_meta(version, number, builder, smallest, largest))
    return outputs


def _output_meta(
    version: Version,
    number: int,
    builder: TableBuilder,
    smallest: InternalKey,
    largest: InternalKey,
) -> FileMetaData:
    return FileMetaData(
        version.db_name,
        number,
        builder.file_size(),
        smallest,
        largest,
        allow_seeks=1 << 30,
    )