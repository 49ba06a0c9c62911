"""The database: memtables in front of a versioned set of table files."""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from lsmkv.filenames import current_file_name, temp_file_name
from lsmkv.key import KeyType
from lsmkv.memtable import Memtable
from lsmkv.metadata import L0_SLOWDOWN_WRITES_TRIGGER
from lsmkv.version import Version

_log = logging.getLogger(__name__)

DEFAULT_MEMTABLE_SIZE = 1024
MAX_SEQ = (1 << 64) - 1
_SLOWDOWN_DELAY = 0.001


def _read_current_number(name: str) -> int:
    try:
        with open(current_file_name(name), encoding="ascii") as stream:
            return int(stream.read().strip())
    except (OSError, ValueError):
        return 0


class DB:
    """A key/value store; writes go to a memtable that is flushed in the background."""

    def __init__(
        self,
        name: str | os.PathLike,
        version: Version,
        memtable_size: int = DEFAULT_MEMTABLE_SIZE,
    ) -> None:
        self.name = os.fspath(name)
        self._memtable_size = memtable_size
        self._cond = threading.Condition()
        self._mem = Memtable(memtable_size)
        self._imm: Optional[Memtable] = None
        self._current = version
        self._bg_scheduled = False
        self._bg_error: Optional[BaseException] = None

    @classmethod
    def open(cls, name: str | os.PathLike) -> DB:
        """Open the database in directory ``name``, creating it if it is new."""
        name = os.fspath(name)
        number = _read_current_number(name)
        version = Version.load(name, number) if number > 0 else Version(name)
        return cls(name, version)

    def __enter__(self) -> DB:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for any background compaction to finish."""
        with self._cond:
            while self._bg_scheduled:
                self._cond.wait()

    def put(self, user_key: bytes, user_value: bytes) -> None:
        with self._cond:
            seq = self._make_room_for_write()
            self._mem.add(seq, KeyType.VALUE, user_key, user_value)

    def delete(self, user_key: bytes) -> None:
        with self._cond:
            seq = self._make_room_for_write()
            self._mem.add(seq, KeyType.DELETION, user_key, None)

    def get(self, user_key: bytes, seq: int = MAX_SEQ) -> Optional[bytes]:
        """Newest value of ``user_key`` visible at ``seq``, or None."""
        with self._cond:
            mem, imm, current = self._mem, self._imm, self._current
        value = mem.get(user_key, seq)
        if value is not None:
            return value
        if imm is not None:
            value = imm.get(user_key, seq)
            if value is not None:
                return value
        return current.get(user_key, seq)

    def _make_room_for_write(self) -> int:
        # Called with the lock held; may release it while waiting.
        while True:
            if self._bg_error is not None:
                raise RuntimeError("background compaction failed") from self._bg_error
            if self._current.num_level_files(0) >= L0_SLOWDOWN_WRITES_TRIGGER:
                self._cond.wait(_SLOWDOWN_DELAY)
            elif not self._mem.full():
                return self._current.next_seq()
            elif self._imm is not None:
                self._cond.wait()
            else:
                self._imm = self._mem
                self._mem = Memtable(self._memtable_size)
                self._maybe_schedule_compaction()

    def read_current_file(self) -> int:
        """Manifest number recorded in CURRENT, or 0 for a new database."""
        return _read_current_number(self.name)

    def set_current_file(self, descriptor_number: int) -> None:
        """Atomically point CURRENT at manifest ``descriptor_number``."""
        tmp = temp_file_name(self.name, descriptor_number)
        with open(tmp, "w", encoding="ascii") as stream:
            stream.write(str(descriptor_number))
        os.chmod(tmp, 0o600)
        os.replace(tmp, current_file_name(self.name))

    def _maybe_schedule_compaction(self) -> None:
        if self._bg_scheduled:
            return
        self._bg_scheduled = True
        threading.Thread(target=self._background_call, daemon=True).start()

    def _background_call(self) -> None:
        with self._cond:
            imm = self._imm
            version = self._current.copy()

        error: Optional[BaseException] = None
        try:
            if imm is not None:
                version.write_level0_table(imm)
            while version.compact():
                _log.debug("%s", version.debug())
            number = version.save()
            self.set_current_file(number)
        except (OSError, ValueError) as exc:
            _log.error("background compaction failed: %s", exc)
            error = exc

        with self._cond:
            if error is None:
                # Writes may have advanced the sequence while we worked.
                version.seq = max(version.seq, self._current.seq)
                self._current = version
                self._imm = None
            else:
                self._bg_error = error
            self._bg_scheduled = False
            self._cond.notify_all()