"""Core types of a page cache volume: configuration, runtime state and errors."""

from __future__ import annotations

import enum
import sqlite3
import threading
from dataclasses import dataclass
from functools import cached_property
from typing import BinaryIO

SCHEMA_VERSION = 1
META_STR_MAX_BYTES = 128

SQLITE_BUSY = 5
SQLITE_CORRUPT = 11
SQLITE_MISUSE = 21


class CapacityPolicy(enum.Enum):
    """What a volume does when every slot is taken."""

    FIXED = "FIXED"
    FIFO = "FIFO"


@dataclass(frozen=True)
class Configuration:
    """Geometry and policy of a volume."""

    capacity_policy: CapacityPolicy
    page_size: int
    max_pages: int
    id_size: int


class PcacheError(Exception):
    """Base class of every error raised by the package."""


class InvalidHandleError(PcacheError):
    """The handle does not refer to an open volume."""


class InvalidArgumentError(PcacheError, ValueError):
    """An argument is out of range or malformed."""


class SqliteError(PcacheError):
    """The index database reported an error."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code

    @classmethod
    def from_exception(cls, exc: BaseException) -> SqliteError:
        return cls(str(exc), getattr(exc, "sqlite_errorcode", None))


class VolumeIOError(PcacheError):
    """A read, write, truncate or sync on the data file failed."""

    def __init__(self, message: str, errno: int | None = None) -> None:
        super().__init__(message)
        self.errno = errno


class WouldDiscardPagesError(PcacheError):
    """Shrinking a FIXED volume would drop live pages."""


class DefragmentCancelled(PcacheError):
    """The progress callback asked to stop; the volume stays consistent."""


class Volume:
    """Runtime state of one open volume.

    The connection is expected to run in autocommit mode
    (``isolation_level=None``); transactions are issued explicitly.
    The data file must be opened in binary read/write mode.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        data_file: BinaryIO,
        config: Configuration,
        row_count: int = 0,
    ) -> None:
        self.connection = connection
        self.data_file = data_file
        self.config = config
        self.row_count = row_count
        self.lock = threading.RLock()

    def __enter__(self) -> Volume:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @cached_property
    def blank_page(self) -> bytes:
        """A page of zeros, used to wipe deleted slots."""
        return bytes(self.config.page_size)

    def _offset(self, rowid: int) -> int:
        if rowid < 1:
            raise InvalidArgumentError(f"rowid must be positive, got {rowid}")
        return (rowid - 1) * self.config.page_size

    def read_page(self, rowid: int) -> bytes:
        """Read the page stored in the slot of ``rowid``."""
        offset = self._offset(rowid)
        size = self.config.page_size
        try:
            self.data_file.seek(offset)
            data = self.data_file.read(size)
        except (OSError, ValueError) as exc:
            raise VolumeIOError(f"cannot read slot {rowid}: {exc}", getattr(exc, "errno", None)) from exc
        if len(data) != size:
            raise VolumeIOError(f"short read at slot {rowid}: {len(data)} of {size} bytes")
        return data

    def write_page(self, rowid: int, data: bytes) -> None:
        """Write one page into the slot of ``rowid``."""
        offset = self._offset(rowid)
        size = self.config.page_size
        payload = bytes(data)
        if len(payload) != size:
            raise InvalidArgumentError(f"page must be {size} bytes, got {len(payload)}")
        try:
            self.data_file.seek(offset)
            written = self.data_file.write(payload)
        except (OSError, ValueError) as exc:
            raise VolumeIOError(f"cannot write slot {rowid}: {exc}", getattr(exc, "errno", None)) from exc
        if written != size:
            raise VolumeIOError(f"short write at slot {rowid}: {written} of {size} bytes")

    def truncate(self, size: int) -> None:
        """Set the data file to exactly ``size`` bytes."""
        try:
            self.data_file.flush()
            self.data_file.truncate(size)
        except (OSError, ValueError) as exc:
            raise VolumeIOError(f"cannot truncate data file: {exc}", getattr(exc, "errno", None)) from exc

    def close(self) -> None:
        """Close the index connection and the data file."""
        try:
            self.connection.close()
        except sqlite3.Error as exc:
            raise SqliteError.from_exception(exc) from exc
        finally:
            self.data_file.close()