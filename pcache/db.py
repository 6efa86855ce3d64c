"""SQLite helpers: metadata I/O, page lookup and durability."""

from __future__ import annotations

import os
import sqlite3
import struct

from .volume import (
    META_STR_MAX_BYTES,
    SQLITE_BUSY,
    SQLITE_CORRUPT,
    InvalidArgumentError,
    SqliteError,
    Volume,
    VolumeIOError,
)

_MASK = 0xFFFFFFFF
_P1 = 2654435761
_P2 = 2246822519
_P3 = 3266489917
_P4 = 668265263
_P5 = 374761393

_FIND_ROWID = "SELECT rowid FROM pages WHERE id_hash = ? AND id = ?"


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (32 - bits))) & _MASK


def _round(acc: int, lane: int) -> int:
    acc = (acc + lane * _P2) & _MASK
    return (_rotl(acc, 13) * _P1) & _MASK


def xxh32(data: bytes, seed: int = 0) -> int:
    """Compute the 32-bit xxHash of ``data``."""
    data = bytes(data)
    length = len(data)
    seed &= _MASK
    stripe_end = length - length % 16
    if length >= 16:
        accs = [(seed + _P1 + _P2) & _MASK, (seed + _P2) & _MASK, seed, (seed - _P1) & _MASK]
        for lanes in struct.iter_unpack("<4I", data[:stripe_end]):
            accs = [_round(acc, lane) for acc, lane in zip(accs, lanes)]
        h = (_rotl(accs[0], 1) + _rotl(accs[1], 7) + _rotl(accs[2], 12) + _rotl(accs[3], 18)) & _MASK
    else:
        stripe_end = 0
        h = (seed + _P5) & _MASK
    h = (h + length) & _MASK

    tail = data[stripe_end:]
    word_end = len(tail) - len(tail) % 4
    for (word,) in struct.iter_unpack("<I", tail[:word_end]):
        h = (h + word * _P3) & _MASK
        h = (_rotl(h, 17) * _P4) & _MASK
    for byte in tail[word_end:]:
        h = (h + byte * _P5) & _MASK
        h = (_rotl(h, 11) * _P1) & _MASK

    h ^= h >> 15
    h = (h * _P2) & _MASK
    h ^= h >> 13
    h = (h * _P3) & _MASK
    h ^= h >> 16
    return h


def rowid_to_offset(rowid: int, page_size: int) -> int:
    """Byte offset of a slot in the data file; ROWID 1 maps to offset 0."""
    return (rowid - 1) * page_size


def _execute(connection: sqlite3.Connection, sql: str, params: tuple = ()) -> sqlite3.Cursor:
    try:
        return connection.execute(sql, params)
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc


def configure(connection: sqlite3.Connection) -> None:
    """Enable WAL journaling and a generous busy timeout."""
    _execute(connection, "PRAGMA journal_mode=WAL").fetchall()
    _execute(connection, "PRAGMA busy_timeout=5000").fetchall()


def _u32_bytes(value: int) -> bytes:
    if not 0 <= value <= _MASK:
        raise InvalidArgumentError(f"value {value} does not fit in 32 bits")
    return value.to_bytes(4, "little")


def meta_write_u32(connection: sqlite3.Connection, key: str, value: int) -> None:
    """Insert a 32-bit value stored as a 4-byte little-endian blob."""
    _execute(connection, "INSERT INTO metadata(key,value) VALUES(?,?)", (key, _u32_bytes(value)))


def meta_write_str(connection: sqlite3.Connection, key: str, value: str) -> None:
    """Insert a string stored as a NUL-terminated blob."""
    text = value.split("\0", 1)[0]
    blob = text.encode("utf-8") + b"\0"
    _execute(connection, "INSERT INTO metadata(key,value) VALUES(?,?)", (key, blob))


def _meta_value(connection: sqlite3.Connection, key: str) -> tuple[bool, object]:
    row = _execute(connection, "SELECT value FROM metadata WHERE key=?", (key,)).fetchone()
    return (False, None) if row is None else (True, row[0])


def meta_read_u32(connection: sqlite3.Connection, key: str) -> int | None:
    """Read a value written by :func:`meta_write_u32`; ``None`` if the key is absent."""
    found, value = _meta_value(connection, key)
    if not found:
        return None
    if not isinstance(value, bytes) or len(value) != 4:
        raise SqliteError(f"metadata {key!r} is not a 4-byte value", SQLITE_CORRUPT)
    return int.from_bytes(value, "little")


def meta_read_str(connection: sqlite3.Connection, key: str) -> str | None:
    """Read a value written by :func:`meta_write_str`; ``None`` if the key is absent."""
    found, value = _meta_value(connection, key)
    if not found:
        return None
    if not isinstance(value, bytes) or not 0 < len(value) <= META_STR_MAX_BYTES:
        raise SqliteError(f"metadata {key!r} is not a valid string", SQLITE_CORRUPT)
    nul = value.find(b"\0")
    raw = value[:nul] if nul >= 0 else value[:-1]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SqliteError(f"metadata {key!r} is not valid text", SQLITE_CORRUPT) from exc


def meta_update_u32(connection: sqlite3.Connection, key: str, value: int) -> None:
    """Overwrite an existing 32-bit metadata entry in place."""
    _execute(connection, "UPDATE metadata SET value=? WHERE key=?", (_u32_bytes(value), key))


def find_rowid(volume: Volume, identifier: bytes) -> int | None:
    """ROWID of the page with ``identifier``, or ``None`` if there is none."""
    identifier = bytes(identifier)
    if len(identifier) != volume.config.id_size:
        raise InvalidArgumentError(
            f"identifier must be {volume.config.id_size} bytes, got {len(identifier)}"
        )
    row = _execute(volume.connection, _FIND_ROWID, (xxh32(identifier, 0), identifier)).fetchone()
    return None if row is None else row[0]


def wait_for_synchronization(volume: Volume) -> None:
    """Flush and fsync the data file, then checkpoint the WAL."""
    try:
        volume.data_file.flush()
        os.fsync(volume.data_file.fileno())
    except (OSError, ValueError) as exc:
        raise VolumeIOError(f"cannot sync data file: {exc}", getattr(exc, "errno", None)) from exc
    busy, _, _ = _execute(volume.connection, "PRAGMA wal_checkpoint(RESTART)").fetchone()
    if busy:
        raise SqliteError("WAL checkpoint could not complete", SQLITE_BUSY)


def sync_if_durable(volume: Volume, durable: bool) -> bool:
    """Synchronize when ``durable`` is set; return whether a sync took place."""
    if not durable:
        return False
    wait_for_synchronization(volume)
    return True


def exec_bind_int64(connection: sqlite3.Connection, sql: str, value: int) -> int:
    """Run a one-parameter statement and return the number of rows it changed."""
    return _execute(connection, sql, (value,)).rowcount