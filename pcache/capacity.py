"""Capacity management: changing the page limit and preallocating storage."""

from __future__ import annotations

import dataclasses
import itertools
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass

from .db import exec_bind_int64, meta_update_u32, sync_if_durable
from .volume import (
    CapacityPolicy,
    InvalidArgumentError,
    SqliteError,
    Volume,
    WouldDiscardPagesError,
)

_U32_MAX = 0xFFFFFFFF

_COUNT_LIVE = "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL"
_COUNT_LIVE_BEYOND = "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL AND rowid > ?"
_LIVE_WITHIN = "SELECT rowid FROM pages WHERE id_hash IS NOT NULL AND rowid <= ? ORDER BY rowid ASC"
_LIVE_BEYOND = (
    "SELECT rowid, id_hash, id FROM pages WHERE id_hash IS NOT NULL AND rowid > ? ORDER BY rowid ASC"
)
_DELETE_EMPTY_AT = "DELETE FROM pages WHERE rowid=? AND id_hash IS NULL"
_INSERT_AT = "INSERT INTO pages(rowid, id_hash, id) VALUES(?, ?, ?)"
_CLEAR_AT = "UPDATE pages SET id_hash=NULL, id=NULL WHERE rowid=?"
_DELETE_BEYOND = "DELETE FROM pages WHERE rowid > ?"
_CLEAR_FIRST = "UPDATE pages SET id_hash=NULL, id=NULL WHERE rowid=1"
_INSERT_EMPTY = "INSERT INTO pages(id_hash,id) VALUES(NULL,NULL)"


@dataclass(frozen=True)
class _Source:
    rowid: int
    id_hash: int
    identifier: bytes | None


@contextmanager
def _transaction(connection: sqlite3.Connection, begin: str = "BEGIN IMMEDIATE") -> Iterator[None]:
    try:
        connection.execute(begin)
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
        with suppress(sqlite3.Error):
            connection.execute("ROLLBACK")
        raise SqliteError.from_exception(exc) from exc


def _scalar(connection: sqlite3.Connection, sql: str, params: tuple = ()) -> int:
    try:
        row = connection.execute(sql, params).fetchone()
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc
    return 0 if row is None else row[0]


def _rows(connection: sqlite3.Connection, sql: str, params: tuple = ()) -> list[tuple]:
    try:
        return connection.execute(sql, params).fetchall()
    except sqlite3.Error as exc:
        raise SqliteError.from_exception(exc) from exc


def _free_destinations(connection: sqlite3.Connection, limit: int, wanted: int) -> list[int]:
    """Lowest ``wanted`` slots within ``[1, limit]`` that hold no live page."""
    live = {rowid for (rowid,) in _rows(connection, _LIVE_WITHIN, (limit,))}
    free = (rowid for rowid in range(1, limit + 1) if rowid not in live)
    return list(itertools.islice(free, wanted))


def _shrink_fixed(volume: Volume, new_max_pages: int) -> None:
    connection = volume.connection
    live_beyond = _scalar(connection, _COUNT_LIVE_BEYOND, (new_max_pages,))

    if live_beyond > 0:
        if _scalar(connection, _COUNT_LIVE) > new_max_pages:
            raise WouldDiscardPagesError(
                f"volume holds more live pages than the new limit of {new_max_pages}"
            )

        destinations = _free_destinations(connection, new_max_pages, live_beyond)
        sources = [
            _Source(rowid, id_hash, bytes(identifier) if identifier else None)
            for rowid, id_hash, identifier in _rows(connection, _LIVE_BEYOND, (new_max_pages,))
        ]
        pairs = list(zip(sources, destinations))

        for source, destination in pairs:
            volume.write_page(destination, volume.read_page(source.rowid))

        with _transaction(connection):
            try:
                for source, destination in pairs:
                    connection.execute(_DELETE_EMPTY_AT, (destination,))
                    connection.execute(_INSERT_AT, (destination, source.id_hash, source.identifier))
                    connection.execute(_CLEAR_AT, (source.rowid,))
            except sqlite3.Error as exc:
                raise SqliteError.from_exception(exc) from exc

    exec_bind_int64(connection, _DELETE_BEYOND, new_max_pages)
    volume.row_count = min(volume.row_count, new_max_pages)


def _shrink_fifo(volume: Volume, new_max_pages: int) -> None:
    connection = volume.connection
    with _transaction(connection):
        exec_bind_int64(connection, _DELETE_BEYOND, new_max_pages)
        # A FIFO volume keeps one empty slot in steady state; restore it
        # when every surviving slot is live.
        if _scalar(connection, _COUNT_LIVE) == new_max_pages:
            try:
                connection.execute(_CLEAR_FIRST)
            except sqlite3.Error as exc:
                raise SqliteError.from_exception(exc) from exc

    volume.row_count = min(volume.row_count, new_max_pages)
    volume.truncate(new_max_pages * volume.config.page_size)


def set_max_pages(volume: Volume, new_max_pages: int, durable: bool = False) -> None:
    """Change the page limit of a volume and persist it.

    Shrinking a FIXED volume relocates live pages beyond the new limit into
    free slots below it and raises :class:`WouldDiscardPagesError` if they do
    not fit. Shrinking a FIFO volume drops the slots beyond the limit and
    truncates the data file.
    """
    if not 0 < new_max_pages <= _U32_MAX:
        raise InvalidArgumentError(f"max_pages must be in [1, {_U32_MAX}], got {new_max_pages}")

    with volume.lock:
        old_max = volume.config.max_pages
        if new_max_pages == old_max:
            return

        if new_max_pages < old_max:
            if volume.config.capacity_policy is CapacityPolicy.FIXED:
                _shrink_fixed(volume, new_max_pages)
            else:
                _shrink_fifo(volume, new_max_pages)

        with _transaction(volume.connection):
            meta_update_u32(volume.connection, "max_pages", new_max_pages)

        sync_if_durable(volume, durable)
        volume.config = dataclasses.replace(volume.config, max_pages=new_max_pages)


def preallocate(
    volume: Volume,
    preallocate_database: bool = True,
    preallocate_datafile: bool = True,
    durable: bool = False,
) -> None:
    """Create empty index rows and/or size the data file up to ``max_pages``."""
    with volume.lock:
        max_pages = volume.config.max_pages
        start = volume.row_count + 1

        if preallocate_database and start <= max_pages:
            connection = volume.connection
            with _transaction(connection, "BEGIN"):
                try:
                    connection.executemany(_INSERT_EMPTY, itertools.repeat((), max_pages - start + 1))
                except sqlite3.Error as exc:
                    raise SqliteError.from_exception(exc) from exc
            volume.row_count = max_pages

        if preallocate_datafile:
            volume.truncate(max_pages * volume.config.page_size)

        sync_if_durable(volume, durable)