"""Volume types, index helpers, handle table and maintenance for a page cache kept in a flat data file with an SQLite index."""

__version__ = "1.0.0"