# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Core copy operations.

This module provides the public API for copying a tree (or a single file)
into a possibly pre-existing destination, as well as the internal _Copier
class that holds the state of a single run.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
import stat
import threading
from typing import Optional, Protocol

from copyrec.types import (
    CopyCancelledError,
    CopyIOError,
    CopyOptions,
    CopyRecurseProgrammingError,
    CopyResult,
    DirAction,
    EntryKind,
    FileSystemEntry,
    PathResolutionError,
    PolicyError,
    StatError,
)
from copyrec.util import (
    absolute_path,
    ancestor_chain,
    dereference_dest_if_dir,
    format_id,
    lstat_or_none,
    parent_dir,
    remove_path,
    resolve_ownership,
    stat_or_none,
)
from copyrec.walk import walk_path

logger = logging.getLogger(__name__)


class CancelToken(Protocol):
    """Anything with an is_set() method, typically a threading.Event."""

    def is_set(self) -> bool: ...


# =============================================================================
# Public API
# =============================================================================


def copy_recurse(
    src: str,
    dest: str,
    options: CopyOptions | None = None,
    *,
    cancel: Optional[CancelToken] = None,
    **kwargs,
) -> CopyResult:
    """Copy src to dest in one call.

    Args:
        src: Source file or directory
        dest: Destination path; merged into if it already exists
        options: Optional CopyOptions for configuration
        cancel: Optional token polled before each entry
        **kwargs: Override options fields (uid, gid, match_dir, etc.)

    Returns:
        CopyResult listing what was written and what was skipped
    """
    return CopyRecurse(src, dest, options, **kwargs).run(cancel)


def _make_options(options: CopyOptions | None, **kwargs) -> CopyOptions:
    """Create CopyOptions from an optional base and overrides."""
    if options is None:
        return CopyOptions(**kwargs)
    elif kwargs:
        return dataclasses.replace(options, **kwargs)
    else:
        return options


class CopyRecurse:
    """
    A single copy job from a source path to a destination path.

    The job is built once and consumed by exactly one run(). Both paths
    are made absolute at construction; a destination that is a symlink to
    a directory is replaced by the directory it points to.
    """

    def __init__(self, src: str, dest: str, options: CopyOptions | None = None, **kwargs):
        self.options = _make_options(options, **kwargs)
        self.src = absolute_path(src, "source")
        self.dest = dereference_dest_if_dir(absolute_path(dest, "destination"))

        self._lock = threading.Lock()
        self._consumed = False

    def run(self, cancel: Optional[CancelToken] = None) -> CopyResult:
        """Perform the copy.

        Halts on the first error; entries copied before it stay on disk.
        """
        if not self._lock.acquire(blocking=False):
            raise CopyRecurseProgrammingError(
                f"run() is already in progress for {self.src!r} -> {self.dest!r}"
            )
        try:
            if self._consumed:
                raise CopyRecurseProgrammingError(
                    f"copy job {self.src!r} -> {self.dest!r} has already been run"
                )
            self._consumed = True

            copier = _Copier(self, cancel)
            copier.prepare_dest_parent()
            copier.copy()
            return copier.result
        finally:
            self._lock.release()

    def __repr__(self) -> str:
        return f"CopyRecurse({self.src!r}, {self.dest!r})"


def _match_any(path: str) -> bool:
    return True


def _fall_through(path: str) -> DirAction:
    return DirAction.FALL_THROUGH


# =============================================================================
# Internal _Copier class
# =============================================================================


class _Copier:
    """
    Internal class that manages state during a single run.

    visited_dest_dirs holds every destination directory whose type,
    permissions and ownership were already reconciled in this run;
    those are never examined again.
    """

    def __init__(self, job: CopyRecurse, cancel: Optional[CancelToken]):
        opts = job.options
        self.src = job.src
        self.dest = job.dest
        self.uid = opts.uid
        self.gid = opts.gid
        self.abort_if_dest_parent_missing = opts.abort_if_dest_parent_missing
        self.log = opts.logger or logger
        self.cancel = cancel

        # Without any policy the root itself is included as a whole
        self.include_root = opts.match_dir is None and opts.match_file is None
        self.match_dir = opts.match_dir or _fall_through
        self.match_file = opts.match_file or _match_any

        self.visited_dest_dirs: set[str] = set()
        self.result = CopyResult()

    def copy(self) -> None:
        """Walk the source, applying policies and copying what matches."""
        self.log.debug(
            f"Copying {self.src!r} to {self.dest!r} with UID/GID "
            f"{format_id(self.uid)}/{format_id(self.gid)}."
        )
        if self.include_root:
            self.check_cancelled(self.src)
            self.copy_recurse(self.src, self.dest)
            return

        walk_path(self.src, self._visit)

    def check_cancelled(self, path: str) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise CopyCancelledError(f"copying cancelled before {path!r}", path=path)

    def _visit(self, rel_path: str, entry: FileSystemEntry) -> bool:
        self.check_cancelled(entry.path)

        entry_dest = self.dest if rel_path == "." else os.path.join(self.dest, rel_path)
        self.log.debug(f"Walking path {entry.path!r}.")

        if entry.is_dir:
            return self.process_dir(entry, entry_dest)

        self.process_file(entry, entry_dest)
        return False

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def process_dir(self, entry: FileSystemEntry, dest: str) -> bool:
        """Apply the directory policy. Returns whether to descend into entry."""
        self.log.debug(f"Processing directory {entry.path!r}.")

        if entry.path == self.src:
            self.log.debug(f"Will look for matches in directory {entry.path!r}.")
            return True

        action = self._call_policy(self.match_dir, entry.path, "match directory")
        match action:
            case DirAction.INCLUDE:
                self.log.debug(f"Dir {entry.path!r} fully matched.")
                self.copy_recurse(entry.path, dest, entry)
                return False
            case DirAction.FALL_THROUGH:
                self.log.debug(f"Will look for matches in directory {entry.path!r}.")
                return True
            case DirAction.SKIP:
                self.log.debug(f"Skipping directory {entry.path!r}.")
                return False
            case _:
                raise CopyRecurseProgrammingError(
                    f"directory policy returned {action!r} for {entry.path!r}, "
                    f"expected a DirAction",
                    path=entry.path,
                    operation="match directory",
                )

    def process_file(self, entry: FileSystemEntry, dest: str) -> None:
        """Apply the file policy and copy the entry if it matches."""
        self.log.debug(f"Processing file {entry.path!r}.")

        if self._call_policy(self.match_file, entry.path, "match file"):
            self.copy_recurse(entry.path, dest, entry)
        else:
            self.log.debug(f"Skipping file {entry.path!r}.")

    def _call_policy(self, policy, path: str, operation: str):
        try:
            return policy(path)
        except Exception as e:
            raise PolicyError(
                f"error calling {operation} policy for {path!r}: {e}",
                path=path,
                operation=operation,
            ) from e

    # -------------------------------------------------------------------------
    # Copying
    # -------------------------------------------------------------------------

    def copy_recurse(
        self, src: str, dest: str, entry: Optional[FileSystemEntry] = None
    ) -> None:
        """Copy src to dest unconditionally, including its whole subtree."""
        self.log.debug(
            f"Going to recursively copy {src!r} to {dest!r} with UID/GID "
            f"{format_id(self.uid)}/{format_id(self.gid)}."
        )

        if entry is None or entry.is_dir:
            walk_path(src, lambda rel_path, e: self._visit_included(dest, rel_path, e))
        else:
            self._copy_entry(entry, dest)

    def _visit_included(self, dest: str, rel_path: str, entry: FileSystemEntry) -> bool:
        self.check_cancelled(entry.path)

        entry_dest = dest if rel_path == "." else os.path.join(dest, rel_path)
        self.log.debug(f"Walking path {entry.path!r} for copying.")

        if entry.is_dir:
            self.materialize(entry_dest)
            return True

        self._copy_entry(entry, entry_dest)
        return False

    def _copy_entry(self, entry: FileSystemEntry, dest: str) -> None:
        match entry.kind:
            case EntryKind.REGULAR_FILE:
                self._materialize_parent(dest)
                self.copy_file(entry, dest)
            case EntryKind.SYMLINK:
                self._materialize_parent(dest)
                self.copy_symlink(entry, dest)
            case EntryKind.DIRECTORY:
                raise CopyRecurseProgrammingError(
                    f"_copy_entry() passed a directory: {entry.path}"
                )
            case _:
                self.log.warning(
                    f"File {entry.path!r} is of type {entry.type_name!r}. "
                    f"Copying of such a type is not supported, skipping."
                )
                self.result.unsupported.append(entry.path)

    def _materialize_parent(self, dest: str) -> None:
        # The parent of the destination root is handled by prepare_dest_parent()
        if dest != self.dest:
            self.materialize(parent_dir(dest))

    def copy_file(self, entry: FileSystemEntry, dest: str) -> None:
        """Replace whatever is at dest with a copy of a regular file."""
        self.log.debug(
            f"Going to copy file {entry.path!r} to {dest!r} with UID/GID "
            f"{format_id(self.uid)}/{format_id(self.gid)}."
        )

        try:
            src_file = open(entry.path, "rb")
        except OSError as e:
            raise CopyIOError(
                f"error opening file {entry.path!r}: {e.strerror}",
                path=entry.path,
                operation="open",
            ) from e

        with src_file:
            if lstat_or_none(dest) is not None:
                self.log.info(f"Removing path {dest!r}.")
                remove_path(dest)

            self.log.info(f"Creating destination file {dest!r}.")
            try:
                dest_file = open(dest, "wb")
            except OSError as e:
                raise CopyIOError(
                    f"error creating file {dest!r}: {e.strerror}",
                    path=dest,
                    operation="create",
                ) from e

            with dest_file:
                fd = dest_file.fileno()

                self.log.info(f"Chmod destination file {dest!r} to {entry.mode:o}.")
                try:
                    os.fchmod(fd, entry.mode)
                except OSError as e:
                    raise CopyIOError(
                        f"error changing permissions for file {dest!r} to "
                        f"{entry.mode:o}: {e.strerror}",
                        path=dest,
                        operation="chmod",
                    ) from e

                uid, gid = resolve_ownership(self.uid, self.gid, entry)
                self.log.info(f"Changing file {dest!r} ownership to {uid}/{gid}.")
                try:
                    os.fchown(fd, uid, gid)
                except OSError as e:
                    raise CopyIOError(
                        f"error changing ownership for {dest!r}: {e.strerror}",
                        path=dest,
                        operation="chown",
                    ) from e

                self.log.debug(f"Copying file contents from {entry.path!r} to {dest!r}.")
                try:
                    shutil.copyfileobj(src_file, dest_file)
                except OSError as e:
                    raise CopyIOError(
                        f"error copying file from {entry.path!r} to {dest!r}: {e.strerror}",
                        path=dest,
                        operation="write",
                    ) from e

        self.result.files.append(dest)

    def copy_symlink(self, entry: FileSystemEntry, dest: str) -> None:
        """Recreate a symlink at dest with the same, unresolved target."""
        link_dest = entry.read_target()

        self.log.info(f"Removing path {dest!r}.")
        remove_path(dest)

        self.log.info(f"Creating symlink {dest!r} => {link_dest!r}.")
        try:
            os.symlink(link_dest, dest)
        except OSError as e:
            raise CopyIOError(
                f"error creating symlink {dest!r}: {e.strerror}",
                path=dest,
                operation="symlink",
            ) from e

        self.result.symlinks.append(dest)

    # -------------------------------------------------------------------------
    # Directory materialization
    # -------------------------------------------------------------------------

    def materialize(self, dest_path: str) -> None:
        """
        Make every directory from the destination root down to dest_path exist
        with the permissions and ownership of its source counterpart.

        Work is done at most once per directory per run: everything at or
        above the deepest already visited directory of the chain is skipped.
        """
        if dest_path in self.visited_dest_dirs:
            return

        self.log.debug(f"Going to create empty dirs chain (if needed) for path {dest_path!r}.")

        chain = ancestor_chain(self.dest, dest_path)
        start = 0
        for i in range(len(chain) - 1, -1, -1):
            if chain[i] in self.visited_dest_dirs:
                start = i + 1
                break

        for dir_path in chain[start:]:
            self._materialize_dir(dir_path)

        self.visited_dest_dirs.update(chain)

    def _materialize_dir(self, dest_path: str) -> None:
        self.log.debug(f"Going to create empty dir (if needed) {dest_path!r}.")

        rel_path = os.path.relpath(dest_path, self.dest)
        src_path = os.path.normpath(os.path.join(self.src, rel_path))

        try:
            src_st = os.lstat(src_path)
        except OSError as e:
            raise StatError(
                f"error getting file info for {src_path!r}: {e.strerror}",
                path=src_path,
                operation="lstat",
            ) from e
        perm = src_st.st_mode & 0o777

        dest_st = lstat_or_none(dest_path)
        if dest_st is None:
            self._mkdir(dest_path, perm)
        elif not stat.S_ISDIR(dest_st.st_mode):
            self.log.info(f"Removing path {dest_path!r}.")
            remove_path(dest_path)
            self._mkdir(dest_path, perm)
        elif dest_st.st_mode & 0o777 != perm:
            self.log.info(f"Setting perms of already present dir {dest_path!r} to {perm:o}.")
            self._chmod(dest_path, perm)

        uid, gid = resolve_ownership(self.uid, self.gid, src_st)
        self.log.info(f"Changing dir {dest_path!r} ownership to {uid}/{gid}.")
        try:
            os.lchown(dest_path, uid, gid)
        except OSError as e:
            raise CopyIOError(
                f"error changing ownership for {dest_path!r}: {e.strerror}",
                path=dest_path,
                operation="chown",
            ) from e

        self.result.dirs.append(dest_path)

    def _mkdir(self, path: str, perm: int) -> None:
        self.log.info(f"Creating dir {path!r} with perms {perm:o}.")
        try:
            os.mkdir(path, perm)
        except OSError as e:
            raise CopyIOError(
                f"error creating directory {path!r}: {e.strerror}",
                path=path,
                operation="mkdir",
            ) from e
        # mkdir() is subject to the umask
        self._chmod(path, perm)

    def _chmod(self, path: str, perm: int) -> None:
        try:
            os.chmod(path, perm)
        except OSError as e:
            raise CopyIOError(
                f"error changing permissions for {path!r} to {perm:o}: {e.strerror}",
                path=path,
                operation="chmod",
            ) from e

    # -------------------------------------------------------------------------
    # Destination preparation
    # -------------------------------------------------------------------------

    def prepare_dest_parent(self) -> None:
        """Make sure the parent directory of the destination is usable."""
        dest_parent = parent_dir(self.dest)
        self.log.debug(f"Preparing parent dir {dest_parent!r} for destination {self.dest!r}.")

        st = lstat_or_none(dest_parent)
        if st is None:
            if self.abort_if_dest_parent_missing:
                raise PathResolutionError(
                    f"directory {dest_parent!r} does not exist",
                    path=dest_parent,
                    operation="prepare destination parent",
                )
            self._makedirs(dest_parent)
        elif stat.S_ISLNK(st.st_mode):
            target_st = stat_or_none(dest_parent)
            if target_st is None or not stat.S_ISDIR(target_st.st_mode):
                self._recreate_parent_dir(dest_parent)
        elif not stat.S_ISDIR(st.st_mode):
            self._recreate_parent_dir(dest_parent)

    def _recreate_parent_dir(self, dest_parent: str) -> None:
        if self.abort_if_dest_parent_missing:
            raise PathResolutionError(
                f"something is in place of a destination parent dir {dest_parent!r}",
                path=dest_parent,
                operation="prepare destination parent",
            )

        self.log.info(f"Removing file in place of a destination parent dir {dest_parent!r}.")
        remove_path(dest_parent)
        self._makedirs(dest_parent)

    def _makedirs(self, path: str) -> None:
        self.log.info(f"Creating destination parent dir (and its parents) at {path!r}.")
        try:
            os.makedirs(path, 0o777, exist_ok=True)
        except OSError as e:
            raise CopyIOError(
                f"error creating directories up to parent destination directory "
                f"{path!r}: {e.strerror}",
                path=path,
                operation="mkdir",
            ) from e
