import os
import sqlite3

import pytest

from pcache.capacity import preallocate, set_max_pages
from pcache.db import configure, find_rowid, meta_read_u32, meta_write_str, meta_write_u32, xxh32
from pcache.volume import (
    CapacityPolicy,
    Configuration,
    InvalidArgumentError,
    Volume,
    WouldDiscardPagesError,
)

ID_SIZE = 16
PAGE_SIZE = 256
MAX_PAGES = 8


def make_id_with_index(index):
    return bytes(ID_SIZE - 4) + index.to_bytes(4, "big")


def make_page_with_index(index):
    return bytes((index + i) & 0xFF for i in range(PAGE_SIZE))


@pytest.fixture
def make_volume(tmp_path):
    opened = []

    def factory(policy=CapacityPolicy.FIXED, max_pages=MAX_PAGES, eager=True):
        name = f"vol{len(opened)}"
        db_path = tmp_path / f"{name}.db"
        data_path = tmp_path / f"{name}.dat"
        connection = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        configure(connection)
        connection.execute("CREATE TABLE metadata(key TEXT PRIMARY KEY, value BLOB)")
        connection.execute("CREATE TABLE pages(id_hash INTEGER, id BLOB)")
        connection.execute("CREATE INDEX idx_lookup ON pages(id_hash)")
        meta_write_u32(connection, "version", 1)
        meta_write_u32(connection, "page_size", PAGE_SIZE)
        meta_write_u32(connection, "max_pages", max_pages)
        meta_write_u32(connection, "id_size", ID_SIZE)
        meta_write_str(connection, "capacity_policy", policy.value)
        data_file = open(data_path, "w+b")
        config = Configuration(policy, PAGE_SIZE, max_pages, ID_SIZE)
        volume = Volume(connection, data_file, config, 0)
        volume.paths = (db_path, data_path)
        opened.append(volume)
        if eager:
            preallocate(volume, True, True, False)
        return volume

    yield factory
    for volume in opened:
        if not volume.data_file.closed:
            volume.close()


def put(volume, rowid, index):
    identifier = make_id_with_index(index)
    volume.connection.execute(
        "UPDATE pages SET id_hash=?, id=? WHERE rowid=?", (xxh32(identifier, 0), identifier, rowid)
    )
    volume.write_page(rowid, make_page_with_index(index))


def clear(volume, rowid):
    volume.connection.execute("UPDATE pages SET id_hash=NULL, id=NULL WHERE rowid=?", (rowid,))


def count(volume, sql):
    return volume.connection.execute(sql).fetchone()[0]


def test_preallocated_database_has_max_pages_null_rows(make_volume):
    volume = make_volume()
    assert count(volume, "SELECT COUNT(*) FROM pages") == MAX_PAGES
    assert count(volume, "SELECT COUNT(*) FROM pages WHERE id IS NULL AND id_hash IS NULL") == MAX_PAGES
    assert volume.row_count == MAX_PAGES


def test_preallocated_datafile_has_full_size(make_volume):
    volume = make_volume()
    volume.data_file.flush()
    assert os.path.getsize(volume.paths[1]) == MAX_PAGES * PAGE_SIZE


def test_preallocate_twice_adds_no_rows(make_volume):
    volume = make_volume()
    preallocate(volume, True, True, True)
    assert count(volume, "SELECT COUNT(*) FROM pages") == MAX_PAGES


def test_lazy_volume_preallocates_only_database(make_volume):
    volume = make_volume(eager=False)
    assert count(volume, "SELECT COUNT(*) FROM pages") == 0
    preallocate(volume, True, False, False)
    assert count(volume, "SELECT COUNT(*) FROM pages") == MAX_PAGES
    assert os.path.getsize(volume.paths[1]) == 0


def test_set_max_pages_zero_is_invalid(make_volume):
    volume = make_volume()
    with pytest.raises(InvalidArgumentError):
        set_max_pages(volume, 0)


def test_grow_persists_little_endian_value(make_volume):
    volume = make_volume()
    set_max_pages(volume, 12, durable=True)
    assert volume.config.max_pages == 12
    assert meta_read_u32(volume.connection, "max_pages") == 12
    blob = volume.connection.execute("SELECT value FROM metadata WHERE key='max_pages'").fetchone()[0]
    assert blob == (12).to_bytes(4, "little")


def test_same_value_changes_nothing(make_volume):
    volume = make_volume()
    set_max_pages(volume, MAX_PAGES)
    assert meta_read_u32(volume.connection, "max_pages") == MAX_PAGES
    assert count(volume, "SELECT COUNT(*) FROM pages") == MAX_PAGES


def test_fixed_shrink_relocates_live_pages(make_volume):
    volume = make_volume()
    for rowid in range(1, MAX_PAGES + 1):
        put(volume, rowid, rowid)
    for rowid in (1, 3, 4, 6):
        clear(volume, rowid)

    set_max_pages(volume, 4)

    assert volume.config.max_pages == 4
    assert meta_read_u32(volume.connection, "max_pages") == 4
    assert count(volume, "SELECT COUNT(*) FROM pages") == 4
    assert count(volume, "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL") == 4
    assert volume.row_count == 4
    for index in (2, 5, 7, 8):
        rowid = find_rowid(volume, make_id_with_index(index))
        assert rowid is not None and rowid <= 4
        assert volume.read_page(rowid) == make_page_with_index(index)


def test_relocated_page_lives_at_rowid_offset(make_volume):
    volume = make_volume()
    put(volume, 8, 42)
    set_max_pages(volume, 2)
    rowid = find_rowid(volume, make_id_with_index(42))
    assert rowid == 1
    volume.data_file.flush()
    with open(volume.paths[1], "rb") as raw:
        raw.seek((rowid - 1) * PAGE_SIZE)
        assert raw.read(PAGE_SIZE) == make_page_with_index(42)


def test_fixed_shrink_would_discard_pages(make_volume):
    volume = make_volume()
    for rowid in range(1, 6):
        put(volume, rowid, rowid)
    with pytest.raises(WouldDiscardPagesError):
        set_max_pages(volume, 4)
    assert volume.config.max_pages == MAX_PAGES
    assert meta_read_u32(volume.connection, "max_pages") == MAX_PAGES
    assert count(volume, "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL") == 5


def test_fifo_shrink_drops_rows_and_truncates(make_volume):
    volume = make_volume(CapacityPolicy.FIFO)
    for rowid in range(2, MAX_PAGES + 1):
        put(volume, rowid, rowid)

    set_max_pages(volume, 4)

    assert count(volume, "SELECT COUNT(*) FROM pages") == 4
    assert count(volume, "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL") == 3
    assert find_rowid(volume, make_id_with_index(2)) == 2
    assert find_rowid(volume, make_id_with_index(5)) is None
    assert os.path.getsize(volume.paths[1]) == 4 * PAGE_SIZE
    assert volume.row_count == 4


def test_fifo_shrink_restores_empty_slot(make_volume):
    volume = make_volume(CapacityPolicy.FIFO)
    for rowid in range(1, MAX_PAGES + 1):
        put(volume, rowid, rowid)

    set_max_pages(volume, 4)

    assert count(volume, "SELECT COUNT(*) FROM pages WHERE id_hash IS NOT NULL") == 3
    assert find_rowid(volume, make_id_with_index(1)) is None
    assert find_rowid(volume, make_id_with_index(4)) == 4
    assert meta_read_u32(volume.connection, "max_pages") == 4