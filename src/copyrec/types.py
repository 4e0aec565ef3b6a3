# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Type definitions for copyrec.

This module contains the enums, dataclasses and exceptions that define the
core data structures used throughout copyrec.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class DirAction(Enum):
    """Decision returned by a directory policy."""

    INCLUDE = "include"
    FALL_THROUGH = "fall-through"
    SKIP = "skip"


class EntryKind(Enum):
    """Types of filesystem nodes met while walking."""

    DIRECTORY = "directory"
    REGULAR_FILE = "file"
    SYMLINK = "symlink"
    OTHER = "other"


MatchDirFunc = Callable[[str], DirAction]
MatchFileFunc = Callable[[str], bool]


# =============================================================================
# Exceptions
# =============================================================================


class CopyRecurseError(Exception):
    """
    Base class for errors raised while copying.

    Attributes:
        message: Human readable description, including path and operation
        path: The path the failed operation was applied to
        operation: Short name of the attempted operation (e.g. "mkdir")
        errno: Exit code used by the command-line interface
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        operation: Optional[str] = None,
        errno: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.operation = operation
        self.errno = errno


class PathResolutionError(CopyRecurseError):
    """A source or destination path could not be resolved or prepared."""


class StatError(CopyRecurseError):
    """Getting file information about a path failed."""


class PolicyError(CopyRecurseError):
    """A caller-supplied directory or file policy raised."""


class CopyIOError(CopyRecurseError):
    """A filesystem mutation or read failed."""


class CopyCancelledError(CopyRecurseError):
    """The cancellation token was set while the run was in progress."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, path=path, operation="cancel", errno=130)


class CopyRecurseProgrammingError(CopyRecurseError):
    """Misuse of the API or an invalid policy result. This is a bug in the caller."""


class CopyRecurseCLIError(CopyRecurseError):
    """Bad command line or configuration file contents."""

    def __init__(self, message: str):
        super().__init__(message, errno=2)


# =============================================================================
# Entries
# =============================================================================


@dataclass(slots=True)
class FileSystemEntry:
    """
    One node of the source tree, as seen by lstat().

    Symlinks are never followed; their target is read on demand.
    """

    path: str
    kind: EntryKind
    mode: int
    uid: int
    gid: int
    size: int = 0
    type_name: str = ""

    @classmethod
    def from_stat(cls, path: str, st: os.stat_result) -> FileSystemEntry:
        fmt = stat.S_IFMT(st.st_mode)
        if fmt == stat.S_IFDIR:
            kind = EntryKind.DIRECTORY
        elif fmt == stat.S_IFREG:
            kind = EntryKind.REGULAR_FILE
        elif fmt == stat.S_IFLNK:
            kind = EntryKind.SYMLINK
        else:
            kind = EntryKind.OTHER

        return cls(
            path=path,
            kind=kind,
            mode=st.st_mode & 0o777,
            uid=st.st_uid,
            gid=st.st_gid,
            size=st.st_size,
            type_name=_type_name(fmt),
        )

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    def read_target(self) -> str:
        """Return the unresolved target string of a symlink entry."""
        if self.kind is not EntryKind.SYMLINK:
            raise CopyRecurseProgrammingError(
                f"read_target() called on a {self.kind.value}: {self.path}",
                path=self.path,
                operation="readlink",
            )
        try:
            return os.readlink(self.path)
        except OSError as e:
            raise CopyIOError(
                f"error reading symlink {self.path!r}: {e.strerror}",
                path=self.path,
                operation="readlink",
            ) from e


def _type_name(fmt: int) -> str:
    return {
        stat.S_IFDIR: "directory",
        stat.S_IFREG: "regular file",
        stat.S_IFLNK: "symlink",
        stat.S_IFIFO: "named pipe",
        stat.S_IFSOCK: "socket",
        stat.S_IFCHR: "character device",
        stat.S_IFBLK: "block device",
    }.get(fmt, "unknown")


# =============================================================================
# Configuration and results
# =============================================================================


@dataclass(frozen=True)
class CopyOptions:
    """
    Configuration options for a CopyRecurse job.

    Attributes:
        uid: Owner set on every copied file and directory (default: source's)
        gid: Group set on every copied file and directory (default: source's)
        match_dir: Decides whether a directory is included as a whole, fallen
                   through to search for matches inside, or skipped.
                   If unset but match_file is set, every directory falls through.
                   If both are unset, everything is included.
        match_file: Decides whether a non-directory entry is copied.
                    If unset, every file is copied.
        abort_if_dest_parent_missing: Fail instead of creating the missing
                                      parent directory of the destination
        logger: Where diagnostic events go (default: the "copyrec" logger)
    """

    uid: Optional[int] = None
    gid: Optional[int] = None
    match_dir: Optional[MatchDirFunc] = None
    match_file: Optional[MatchFileFunc] = None
    abort_if_dest_parent_missing: bool = False
    logger: Optional[logging.Logger] = None

    @classmethod
    def from_dict(cls, opts: dict) -> CopyOptions:
        """Create from dict, handling key name conversions."""
        opts = {key.replace("-", "_"): value for key, value in opts.items()}
        return cls(**opts)


@dataclass
class CopyResult:
    """
    Summary of a finished run.

    All paths are destination paths, except unsupported, which lists the
    source entries that were skipped because of their type.
    """

    files: list[str] = field(default_factory=list)
    symlinks: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)
    unsupported: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Return the number of entries written to the destination."""
        return len(self.files) + len(self.symlinks) + len(self.dirs)

    def __bool__(self) -> bool:
        return self.count > 0
