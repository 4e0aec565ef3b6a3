# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Pre-order walking of a source tree without following symlinks."""

from __future__ import annotations

import os
from typing import Callable, Optional

from copyrec.types import CopyIOError, FileSystemEntry, StatError

Visitor = Callable[[str, FileSystemEntry], Optional[bool]]


def walk_path(root: str, visit: Visitor) -> None:
    """
    Walk root depth-first in pre-order, calling visit for each entry.

    visit(rel_path, entry) is called with the path relative to root ("."
    for root itself). For directories, a falsy return value prunes the
    subtree; the rest of the walk goes on. If root is not a directory,
    visit is called exactly once, for root.

    Children are visited in name order. Each entry is lstat'ed just before it is
    visited; any failure to stat or list an entry aborts the whole walk.
    """
    root_entry = _lstat_entry(root)
    descend = visit(".", root_entry)
    if not root_entry.is_dir or not descend:
        return

    # (rel_path, path) pairs, lstat'ed when popped; children are pushed in
    # reverse so the smallest name is popped first
    stack = _children(".", root_entry)
    while stack:
        rel_path, path = stack.pop()
        entry = _lstat_entry(path)
        descend = visit(rel_path, entry)
        if entry.is_dir and descend:
            stack.extend(_children(rel_path, entry))


def _children(rel_path: str, entry: FileSystemEntry) -> list[tuple[str, str]]:
    children = []
    for name in reversed(_list_dir(entry.path)):
        child_rel = name if rel_path == "." else os.path.join(rel_path, name)
        children.append((child_rel, os.path.join(entry.path, name)))
    return children


def _lstat_entry(path: str) -> FileSystemEntry:
    try:
        st = os.lstat(path)
    except OSError as e:
        raise StatError(
            f"error getting file info for path {path!r}: {e.strerror}",
            path=path,
            operation="lstat",
        ) from e
    return FileSystemEntry.from_stat(path, st)


def _list_dir(path: str) -> list[str]:
    try:
        return sorted(os.listdir(path))
    except OSError as e:
        raise CopyIOError(
            f"error reading directory {path!r}: {e.strerror}",
            path=path,
            operation="listdir",
        ) from e
