# copyrec-python - recursive copying with ownership reconciliation
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Command-line interface for copyrec.

This module contains the CLI functions including argument parsing,
configuration file handling, glob-based policies and the main entry point.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shlex
import signal
import sys
import threading
import traceback
from typing import Callable, Optional, Sequence

from copyrec.copyrec import CancelToken, CopyRecurse
from copyrec.types import (
    CopyOptions,
    CopyRecurseCLIError,
    CopyRecurseError,
    CopyRecurseProgrammingError,
    CopyResult,
    DirAction,
)
from copyrec.util import PROGRAM_NAME, VERSION

RC_FILE = ".copyrecrc"
_HANDLER_NAME = "copyrec-cli"

# Options whose values accumulate instead of being replaced
LIST_OPTIONS = ("include", "include_dir", "exclude_dir")


def main() -> None:
    """Main entry point for the copyrec command."""
    cancel = threading.Event()
    previous = {
        signum: signal.signal(signum, lambda *_: cancel.set())
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        _main(sys.argv[1:], cancel)
    except CopyRecurseProgrammingError as e:
        print(
            f"\n{PROGRAM_NAME}: INTERNAL ERROR: {e.message}\n{traceback.format_exc()}",
            file=sys.stderr,
        )
        sys.exit(e.errno)
    except CopyRecurseCLIError as e:
        print(f"{PROGRAM_NAME}: {e.message}", file=sys.stderr)
        sys.exit(e.errno)
    except CopyRecurseError as e:
        print(f"{PROGRAM_NAME}: ERROR: {e.message}", file=sys.stderr)
        sys.exit(e.errno)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _main(args: Sequence[str], cancel: Optional[CancelToken] = None) -> CopyResult:
    """Main implementation (can raise CopyRecurseError)."""
    options, src, dest = process_options(args)
    configure_logging(options.get("verbose", 0))

    copy_options = build_copy_options(options, os.path.abspath(src))
    result = CopyRecurse(src, dest, copy_options).run(cancel)

    log = logging.getLogger("copyrec")
    log.info(
        f"Copied {len(result.files)} file(s), {len(result.symlinks)} symlink(s), "
        f"{len(result.dirs)} dir(s) to {dest}."
    )
    for path in result.unsupported:
        log.info(f"Not copied (unsupported type): {path}")
    return result


def configure_logging(verbosity: int) -> None:
    """Send copyrec diagnostics to stderr.

    Verbosity levels:
        0: warnings and errors only
        1: filesystem operations (mkdir, chmod, chown, copy, symlink, remove)
        >= 2: traversal and policy trace
    """
    log = logging.getLogger("copyrec")
    for handler in list(log.handlers):
        if handler.get_name() == _HANDLER_NAME:
            log.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(f"{PROGRAM_NAME}: %(message)s"))
    log.addHandler(handler)

    if verbosity >= 2:
        log.setLevel(logging.DEBUG)
    elif verbosity == 1:
        log.setLevel(logging.INFO)
    else:
        log.setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


def make_glob_matcher(patterns: Sequence[str], root: str) -> Callable[[str], bool]:
    """Build a predicate matching paths under root against glob patterns.

    Patterns without a slash match the base name of the path; patterns
    containing a slash match the path relative to root.
    """
    segment_patterns = [p for p in patterns if "/" not in p]
    path_patterns = [p.strip("/") for p in patterns if "/" in p]

    def matches(path: str) -> bool:
        name = os.path.basename(path)
        if any(fnmatch.fnmatchcase(name, p) for p in segment_patterns):
            return True
        if not path_patterns:
            return False
        rel_path = os.path.relpath(path, root)
        return any(fnmatch.fnmatchcase(rel_path, p) for p in path_patterns)

    return matches


def build_copy_options(options: dict, root: str) -> CopyOptions:
    """Translate parsed command-line options into CopyOptions.

    --exclude-dir wins over --include-dir. When --include-dir is given,
    files outside included directories are copied only if they match
    --include.
    """
    includes = options.get("include", [])
    include_dirs = options.get("include_dir", [])
    exclude_dirs = options.get("exclude_dir", [])

    match_file = None
    if includes:
        match_file = make_glob_matcher(includes, root)
    elif include_dirs:
        match_file = _match_none

    match_dir = None
    if include_dirs or exclude_dirs:
        is_included = make_glob_matcher(include_dirs, root)
        is_excluded = make_glob_matcher(exclude_dirs, root)

        def match_dir(path: str) -> DirAction:
            if is_excluded(path):
                return DirAction.SKIP
            if is_included(path):
                return DirAction.INCLUDE
            return DirAction.FALL_THROUGH

    return CopyOptions(
        uid=options.get("uid"),
        gid=options.get("gid"),
        match_dir=match_dir,
        match_file=match_file,
        abort_if_dest_parent_missing=options.get("no_parents", False),
    )


def _match_none(path: str) -> bool:
    return False


# ---------------------------------------------------------------------------
# Option parsing
# ---------------------------------------------------------------------------


def process_options(args: Sequence[str]) -> tuple[dict, str, str]:
    """Parse and process command line and .copyrecrc file options.

    Returns: (options, src, dest)
    """
    cli_options, paths = parse_cli_options(args)
    rc_options = get_config_file_options()

    # Merge .copyrecrc and command line options
    options = dict(rc_options)
    for option, cli_value in cli_options.items():
        rc_value = rc_options.get(option)

        if option in LIST_OPTIONS and rc_value is not None:
            options[option] = list(rc_value) + list(cli_value)
        else:
            options[option] = cli_value

    if len(paths) != 2:
        show_usage_and_exit(f"{PROGRAM_NAME}: expected SOURCE and DEST, got {len(paths)} path(s)")

    return (options, paths[0], paths[1])


def parse_cli_options(args: Sequence[str]) -> tuple[dict, list[str]]:
    """Parse command line options.

    Returns: (options, positional paths)
    """
    options: dict = {}
    paths: list[str] = []

    i = 0
    while i < len(args):
        arg = args[i]
        name, eq, inline_value = arg.partition("=")

        match name:
            case "-u" | "--uid" | "-g" | "--gid":
                value, i = _option_value(args, i, name, inline_value if eq else None)
                key = "uid" if name in ("-u", "--uid") else "gid"
                options[key] = _parse_id(value, name)
            case "--include" | "--include-dir" | "--exclude-dir":
                value, i = _option_value(args, i, name, inline_value if eq else None)
                options.setdefault(name[2:].replace("-", "_"), []).append(value)
            case "--no-parents":
                options["no_parents"] = True
            case "-v" | "--verbose" if not eq:
                options["verbose"] = options.get("verbose", 0) + 1
            case "-v" | "--verbose":
                try:
                    options["verbose"] = int(inline_value)
                except ValueError:
                    options["verbose"] = 1
            case "-h" | "--help":
                show_usage_and_exit()
            case "-V" | "--version":
                show_version_and_exit()
            case "--":
                paths.extend(args[i + 1:])
                break
            case _ if arg.startswith("-vv") and set(arg[1:]) == {"v"}:
                options["verbose"] = options.get("verbose", 0) + len(arg) - 1
            case _ if arg.startswith("-") and arg != "-":
                show_usage_and_exit(f"Unknown option: {name}")
            case _:
                paths.append(arg)
        i += 1

    return (options, paths)


def _option_value(
    args: Sequence[str], i: int, name: str, inline_value: Optional[str]
) -> tuple[str, int]:
    """Return the value of an option and the index of the last consumed arg."""
    if inline_value is not None:
        return inline_value, i
    if i + 1 < len(args):
        return args[i + 1], i + 1
    show_usage_and_exit(f"Option {name} requires an argument")


def _parse_id(value: str, name: str) -> int:
    try:
        number = int(value)
    except ValueError:
        show_usage_and_exit(f"Option {name} expects a numeric id, got {value!r}")
    if number < 0:
        show_usage_and_exit(f"Option {name} expects a non-negative id, got {number}")
    return number


def get_config_file_options() -> dict:
    """Search for default settings in any .copyrecrc files.

    ~/.copyrecrc is read first, then ./.copyrecrc; only options are allowed.
    """
    defaults: list[str] = []
    rc_candidate_paths = [RC_FILE]

    home = os.environ.get("HOME")
    if home:
        rc_candidate_paths.insert(0, os.path.join(home, RC_FILE))

    for file_path in rc_candidate_paths:
        try:
            with open(file_path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    try:
                        defaults.extend(shlex.split(line))
                    except ValueError:
                        defaults.extend(line.split())
        except (FileNotFoundError, PermissionError):
            continue  # Skip missing or unreadable files
        except IsADirectoryError:
            raise CopyRecurseCLIError(f"Could not open {file_path} for reading")

    rc_options, rc_paths = parse_cli_options(defaults)
    if rc_paths:
        raise CopyRecurseCLIError(
            f"{RC_FILE} may only contain options, found: {' '.join(rc_paths)}"
        )
    return rc_options


def show_usage_and_exit(msg: str | None = None, exit_code: int | None = None) -> None:
    """Print program usage message and exit."""
    if msg:
        print(msg, file=sys.stderr)

    print(f"""{PROGRAM_NAME} version {VERSION}

SYNOPSIS:

    {PROGRAM_NAME} [OPTION ...] SOURCE DEST

Copy SOURCE (a file or directory) to DEST, merging into DEST if it exists.
Permission bits and ownership are reproduced, symlinks are copied as symlinks.

OPTIONS:

    -u N, --uid=N         Set the owner of copied files and directories to N
    -g N, --gid=N         Set the group of copied files and directories to N

    --include=GLOB        Copy only files matching GLOB (repeatable)
    --include-dir=GLOB    Copy directories matching GLOB as a whole (repeatable);
                          other files are then copied only if they match --include
    --exclude-dir=GLOB    Never copy directories matching GLOB (repeatable)

                          A GLOB without '/' matches the entry's name, a GLOB
                          with '/' matches its path relative to SOURCE.

    --no-parents          Fail if the parent directory of DEST does not exist
    -v, --verbose[=N]     Increase verbosity (levels are from 0 to 2;
                            -v or --verbose adds 1; --verbose=N sets level)
    -V, --version         Show version number
    -h, --help            Show this help

Defaults are read from ~/{RC_FILE} and ./{RC_FILE}.""")

    if exit_code is not None:
        sys.exit(exit_code)
    elif msg:
        sys.exit(2)
    else:
        sys.exit(0)


def show_version_and_exit() -> None:
    """Print version and exit."""
    print(f"{PROGRAM_NAME} version {VERSION}")
    sys.exit(0)


if __name__ == "__main__":
    main()
