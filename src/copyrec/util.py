# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Utility functions for copyrec.

This module contains general-purpose helpers used throughout copyrec:
ownership resolution, path manipulation and destructive removal.
"""

from __future__ import annotations

import errno as errno_module
import os
import shutil
import stat
from typing import Optional

from copyrec.types import (
    CopyIOError,
    CopyRecurseProgrammingError,
    PathResolutionError,
    StatError,
)

VERSION = "0.3.0"
PROGRAM_NAME = "copyrec"

# lstat/stat errnos meaning "nothing usable is there"
_MISSING_ERRNOS = (errno_module.ENOENT, errno_module.ENOTDIR)


def resolve_ownership(
    uid: Optional[int], gid: Optional[int], src_stat
) -> tuple[int, int]:
    """
    Compute the owner and group to apply to a destination entry.

    Each of uid/gid is resolved independently: the override if set,
    otherwise the value of the source entry. src_stat may be None only
    when both overrides are set; anything with st_uid/st_gid (or uid/gid)
    attributes is accepted.
    """
    if (uid is None or gid is None) and src_stat is None:
        raise CopyRecurseProgrammingError(
            "resolve_ownership() needs source ownership when an override is unset"
        )

    new_uid = uid if uid is not None else _owner_attr(src_stat, "uid")
    new_gid = gid if gid is not None else _owner_attr(src_stat, "gid")
    return new_uid, new_gid


def _owner_attr(src_stat, name: str) -> int:
    value = getattr(src_stat, "st_" + name, None)
    if value is None:
        value = getattr(src_stat, name)
    return int(value)


def format_id(value: Optional[int]) -> str:
    """Format an optional uid/gid override for log messages."""
    return "NIL" if value is None else str(value)


def parent_dir(path: str) -> str:
    """Return the parent directory of a normalized path."""
    return os.path.dirname(os.path.normpath(path))


def ancestor_chain(root: str, path: str) -> list[str]:
    """
    List directories from root down to path, both inclusive, shallow to deep.

    A path that is root itself or lies outside of it yields [root].
    """
    root = os.path.normpath(root)
    path = os.path.normpath(path)

    chain = [root]
    if path == root or not path.startswith(root.rstrip(os.sep) + os.sep):
        return chain

    current = root
    for part in os.path.relpath(path, root).split(os.sep):
        current = os.path.join(current, part)
        chain.append(current)
    return chain


def lstat_or_none(path: str) -> Optional[os.stat_result]:
    """
    lstat() a path, returning None if nothing is there.

    Any other failure is raised as StatError.
    """
    try:
        return os.lstat(path)
    except OSError as e:
        if e.errno in _MISSING_ERRNOS:
            return None
        raise StatError(
            f"error getting file info for {path!r}: {e.strerror}",
            path=path,
            operation="lstat",
        ) from e


def stat_or_none(path: str) -> Optional[os.stat_result]:
    """Like lstat_or_none(), but follows symlinks."""
    try:
        return os.stat(path)
    except OSError as e:
        if e.errno in _MISSING_ERRNOS:
            return None
        raise StatError(
            f"error getting dereferenced file info for {path!r}: {e.strerror}",
            path=path,
            operation="stat",
        ) from e


def remove_path(path: str) -> None:
    """
    Remove whatever is at path, recursively for real directories.

    Symlinks are unlinked, never followed. A missing path is not an error.
    """
    st = lstat_or_none(path)
    if st is None:
        return

    try:
        if stat.S_ISDIR(st.st_mode):
            shutil.rmtree(path)
        else:
            os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise CopyIOError(
            f"error removing path {path!r}: {e.strerror}",
            path=path,
            operation="remove",
        ) from e


def absolute_path(path: str, name: str) -> str:
    """Make path absolute and normalized, wrapping failures."""
    try:
        return os.path.abspath(path)
    except OSError as e:
        raise PathResolutionError(
            f"error getting absolute path for {name} {path!r}: {e.strerror}",
            path=path,
            operation="abspath",
        ) from e


def dereference_dest_if_dir(dest: str) -> str:
    """
    Resolve a destination that is a symlink pointing to a directory.

    Copying into such a destination writes through the link instead of
    replacing it. Chains of links are followed down to the directory. Any
    other destination is returned unchanged.
    """
    st = lstat_or_none(dest)
    if st is None or not stat.S_ISLNK(st.st_mode):
        return dest

    target_st = stat_or_none(dest)
    if target_st is None or not stat.S_ISDIR(target_st.st_mode):
        return dest

    try:
        return os.path.realpath(dest, strict=True)
    except OSError as e:
        raise PathResolutionError(
            f"error resolving symlink at {dest!r}: {e.strerror}",
            path=dest,
            operation="realpath",
        ) from e
