"""Whole-file helpers for identifier and page files."""

from __future__ import annotations

import os

PathLike = str | os.PathLike


def read_file(path: PathLike) -> bytes:
    """Return the whole content of the file at ``path``."""
    with open(path, "rb") as stream:
        return stream.read()


def write_file(path: PathLike, data: bytes) -> None:
    """Replace the file at ``path`` with ``data``."""
    with open(path, "wb") as stream:
        stream.write(bytes(data))


def read_id_file(path: PathLike) -> bytes:
    """Read an identifier file; an unreadable or empty file is an error."""
    message = f"Failed to read id file: {os.fspath(path)}"
    try:
        data = read_file(path)
    except OSError as exc:
        raise OSError(exc.errno, message) from exc
    if not data:
        raise ValueError(message)
    return data