# pcache

Building blocks for a page cache that keeps fixed-size pages in a flat data
file and indexes them by identifier in an SQLite database. The page in the
index row with ROWID `n` lives at byte offset `(n - 1) * page_size` in the
data file.

The package has no dependencies outside the standard library.

## Installing

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Volumes (`pcache.volume`)

- `CapacityPolicy`: `FIXED` or `FIFO`.
- `Configuration`: a frozen dataclass with `capacity_policy`, `page_size`,
  `max_pages` and `id_size`.
- `Volume(connection, data_file, config, row_count=0)`: the runtime state
  of one open volume. `connection` is an `sqlite3.Connection` opened in
  autocommit mode (`isolation_level=None`); `data_file` is a binary file
  opened for reading and writing. `row_count` is the number of rows in the
  index's `pages` table. A volume offers:
  - `read_page(rowid)` and `write_page(rowid, data)`, which read or write
    exactly one page at the slot of that ROWID;
  - `truncate(size)`, which sets the data file to `size` bytes;
  - `close()`, which closes the connection and the data file; a volume is
    also a context manager that closes itself on exit;
  - `blank_page`, a page of zero bytes;
  - `lock`, a re-entrant lock that the maintenance functions hold.

Errors are subclasses of `PcacheError`: `InvalidHandleError`,
`InvalidArgumentError` (also a `ValueError`), `SqliteError` (with `code`),
`VolumeIOError` (with `errno`), `WouldDiscardPagesError` and
`DefragmentCancelled`.

## Index helpers (`pcache.db`)

The index has a `metadata(key, value)` table and a `pages` table whose rows
carry `id_hash` and `id`; a row with `NULL` in both is an empty slot.

- `xxh32(data, seed=0)`: the 32-bit xxHash used as `id_hash`.
- `rowid_to_offset(rowid, page_size)`.
- `configure(connection)`: WAL journaling and a 5 second busy timeout.
- `meta_write_u32`, `meta_update_u32`, `meta_read_u32`: 32-bit values
  stored as 4-byte little-endian blobs. `meta_read_u32` returns `None` for
  a missing key and raises `SqliteError` for a blob of the wrong size.
- `meta_write_str`, `meta_read_str`: strings stored as NUL-terminated
  blobs of at most 128 bytes.
- `find_rowid(volume, identifier)`: ROWID of the page with that
  identifier, or `None`.
- `wait_for_synchronization(volume)`: fsync the data file and checkpoint
  the WAL; `sync_if_durable(volume, durable)` does so only when `durable`
  is true and returns whether it did.
- `exec_bind_int64(connection, sql, value)`: run a one-parameter statement
  and return the number of changed rows.

## Handles (`pcache.handles`)

`HandleTable` maps small positive integer handles to volumes.
`allocate(volume)` returns the handle of the first free slot, reusing freed
ones; `release(handle)` frees a slot. `acquire(handle)` is a context manager
that yields the volume with its lock held, and `acquire_for_close(handle)`
does the same after freeing the slot, so no later lookup can reach it.
Unknown or closed handles raise `InvalidHandleError`.

## Maintenance

- `pcache.defragment.defragment(volume, progress=None, shrink_file=False,
  durable=False)` moves the live pages of a FIXED volume to the lowest
  slots, in batches of 100 per transaction, then drops all empty rows.
  `progress` is called with the fraction of live pages processed; a false
  return value raises `DefragmentCancelled` and leaves the volume
  consistent. With `shrink_file` the data file is cut to the live pages.
  A FIFO volume is left as it is, since slot order encodes its eviction
  order; `progress` is then called once with 1.0.
- `pcache.capacity.set_max_pages(volume, new_max_pages, durable=False)`
  changes the page limit and stores it as the `max_pages` metadata entry.
  The limit must lie in `[1, 2**32 - 1]`. Shrinking a FIXED volume moves
  live pages beyond the limit into empty slots below it and raises
  `WouldDiscardPagesError` if there are more live pages than the limit.
  Shrinking a FIFO volume drops the rows beyond the limit, empties slot 1
  if every remaining slot is live, and truncates the data file.
- `pcache.capacity.preallocate(volume, preallocate_database=True,
  preallocate_datafile=True, durable=False)` adds empty index rows up to
  `max_pages` and/or sets the data file to `max_pages * page_size` bytes.

## Command lines

`pcache.lexer.tokenize(text, debug=False)` splits a line such as
`put id.bin page.bin --durable` into `Token`s: plain words are `COMMAND`
tokens, words starting with `-` are `FLAG` tokens, and `name=value` gives a
`FLAG` token with `flag_value`. `parse(tokens)` builds a `Command` with
`name`, `args` and `flags`; `Command.has_flag(flag)` tests for a flag.

`pcache.files` has `read_file`, `write_file` and `read_id_file`; the last
raises `OSError` for an unreadable file and `ValueError` for an empty one.

## What the package does not do

It does not create or open volumes: the caller makes the index schema, the
metadata entries and the data file, and builds the `Volume` itself. It has
no operations to store, fetch, check or delete pages by identifier, so
nothing here evicts pages or enforces the page limit on writes. It has no
interactive shell or command-line program; the lexer and file helpers are
the pieces such a program would use.