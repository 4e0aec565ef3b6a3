# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
copyrec - recursive, selective copying of filesystem trees

This package copies a directory tree (or a single file) into a destination,
merging with whatever is already there, reproducing permission bits and
ownership, and copying symlinks as symlinks.

Basic usage::

    from copyrec import copy_recurse

    result = copy_recurse("./build", "/srv/app")
    print("Copied files:", result.files)

Selective copying with policies::

    from copyrec import CopyRecurse, CopyOptions, DirAction

    def match_dir(path):
        if path.endswith("/.git"):
            return DirAction.SKIP
        if path.endswith("/static"):
            return DirAction.INCLUDE
        return DirAction.FALL_THROUGH

    options = CopyOptions(
        match_dir=match_dir,
        match_file=lambda path: path.endswith(".py"),
        uid=0,
        gid=0,
    )
    CopyRecurse("./src", "/opt/app", options).run()

Cancellation::

    import threading

    cancel = threading.Event()
    copy_recurse("./src", "./dest", cancel=cancel)  # cancel.set() from elsewhere
"""

import logging

from copyrec.copyrec import CopyRecurse, copy_recurse
from copyrec.types import (
    CopyOptions,
    CopyResult,
    DirAction,
    EntryKind,
    FileSystemEntry,
    CopyRecurseError,
    PathResolutionError,
    StatError,
    PolicyError,
    CopyIOError,
    CopyCancelledError,
    CopyRecurseProgrammingError,
)
from copyrec.util import VERSION as __version__, resolve_ownership

# CLI entry point
from copyrec.cli import main

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "copy_recurse",
    "CopyRecurse",
    "CopyOptions",
    "CopyResult",
    "DirAction",
    "EntryKind",
    "FileSystemEntry",
    "resolve_ownership",
    "CopyRecurseError",
    "PathResolutionError",
    "StatError",
    "PolicyError",
    "CopyIOError",
    "CopyCancelledError",
    "CopyRecurseProgrammingError",
    "__version__",
    "main",
]
