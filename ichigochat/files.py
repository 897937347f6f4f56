"""File helpers used by the server: opening, existence checks, directory walks."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from typing import IO


def open_file(path: str | os.PathLike[str], mode: str) -> IO:
    """Open *path* with a C-style *mode* such as "rb", "r+b" or "w+b"."""
    if "b" in mode:
        return open(path, mode)
    return open(path, mode, encoding="utf-8")


def file_exists(path: str | os.PathLike[str]) -> bool:
    """Return whether *path* names an existing regular file (not a directory)."""
    return os.path.isfile(path)


def _has_extension(filename: str, extensions: frozenset[str]) -> bool:
    # Text after the last period; with no period (or one at the start) the
    # first character is skipped.
    return filename[max(filename.rfind("."), 0) + 1:] in extensions


def _visit(path: str, extensions: frozenset[str]) -> Iterator[str]:
    with os.scandir(path) as entries:
        ordered = sorted(entries, key=lambda entry: entry.name)
    for entry in ordered:
        full_path = f"{path}/{entry.name}"
        if entry.is_dir():
            yield from _visit(full_path, extensions)
        elif _has_extension(entry.name, extensions):
            yield full_path


def recurse_directory(
    path: str | os.PathLike[str], extension_filter: Iterable[str]
) -> list[str]:
    """List files under *path* (recursively) whose extension is in *extension_filter*."""
    return list(_visit(os.fspath(path), frozenset(extension_filter)))