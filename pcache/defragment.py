"""Compaction of FIXED volumes: move live pages to the front of the data file."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass

from .db import sync_if_durable
from .volume import (
    SQLITE_CORRUPT,
    CapacityPolicy,
    DefragmentCancelled,
    SqliteError,
    Volume,
)

_BATCH_SIZE = 100

_SELECT_LIVE = "SELECT rowid FROM pages WHERE id_hash IS NOT NULL ORDER BY rowid ASC"
_SELECT_ROW = "SELECT id_hash, id FROM pages WHERE rowid=?"
_DELETE_EMPTY_AT = "DELETE FROM pages WHERE rowid=? AND id_hash IS NULL"
_INSERT_AT = "INSERT INTO pages(rowid, id_hash, id) VALUES(?, ?, ?)"
_CLEAR_AT = "UPDATE pages SET id_hash=NULL, id=NULL WHERE rowid=?"
_DELETE_ALL_EMPTY = "DELETE FROM pages WHERE id_hash IS NULL"

ProgressCallback = Callable[[float], bool]


@dataclass(frozen=True)
class _Relocation:
    source: int
    destination: int
    id_hash: int
    identifier: bytes | None


@contextmanager
def _immediate_transaction(connection: sqlite3.Connection) -> Iterator[None]:
    try:
        connection.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc
    try:
        yield
    except BaseException:
        with suppress(sqlite3.Error):
            connection.execute("ROLLBACK")
        raise
    try:
        connection.execute("COMMIT")
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc


def _live_rowids(connection: sqlite3.Connection) -> list[int]:
    try:
        return [rowid for (rowid,) in connection.execute(_SELECT_LIVE)]
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc


def _describe(connection: sqlite3.Connection, source: int, destination: int) -> _Relocation:
    try:
        row = connection.execute(_SELECT_ROW, (source,)).fetchone()
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc
    if row is None:
        raise SqliteError(f"live row {source} vanished during defragmentation", SQLITE_CORRUPT)
    id_hash, identifier = row
    blob = bytes(identifier) if identifier else None
    return _Relocation(source, destination, id_hash, blob)


def _commit_batch(connection: sqlite3.Connection, batch: list[_Relocation]) -> None:
    with _immediate_transaction(connection):
        try:
            for relocation in batch:
                connection.execute(_DELETE_EMPTY_AT, (relocation.destination,))
                connection.execute(
                    _INSERT_AT,
                    (relocation.destination, relocation.id_hash, relocation.identifier),
                )
                connection.execute(_CLEAR_AT, (relocation.source,))
        except sqlite3.Error as exc:
            raise SqliteError.from_exception(exc) from exc


def _remove_empty_slots(connection: sqlite3.Connection) -> None:
    with _immediate_transaction(connection):
        try:
            connection.execute(_DELETE_ALL_EMPTY)
        except sqlite3.Error as exc:
            raise SqliteError.from_exception(exc) from exc


def defragment(
    volume: Volume,
    progress: ProgressCallback | None = None,
    shrink_file: bool = False,
    durable: bool = False,
) -> None:
    """Move every live page of a FIXED volume to the lowest slots.

    ``progress`` receives the fraction of live pages processed; a falsy
    return value stops the work and raises :class:`DefragmentCancelled`,
    leaving the volume consistent. FIFO volumes are left untouched, since
    slot positions encode their eviction order; the callback then receives
    1.0 once. With ``shrink_file`` the data file is cut to the live pages.
    """
    with volume.lock:
        if volume.config.capacity_policy is CapacityPolicy.FIFO:
            if progress is not None:
                progress(1.0)
            return

        connection = volume.connection
        rowids = _live_rowids(connection)
        total = len(rowids)
        batch: list[_Relocation] = []

        for position, rowid in enumerate(rowids, start=1):
            if rowid != position:
                relocation = _describe(connection, rowid, position)
                volume.write_page(position, volume.read_page(rowid))
                batch.append(relocation)

            if len(batch) >= _BATCH_SIZE or (position == total and batch):
                _commit_batch(connection, batch)
                batch = []

            if progress is not None and not progress(position / total):
                raise DefragmentCancelled("defragmentation cancelled by the progress callback")

        _remove_empty_slots(connection)
        volume.row_count = total

        if shrink_file:
            volume.truncate(total * volume.config.page_size)

        sync_if_durable(volume, durable)