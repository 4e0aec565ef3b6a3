"""
Pytest configuration for copyrec tests.

Every test gets a fresh pair of source and destination directories under
tmp_path, plus helpers to populate them and to snapshot a tree so that
source and destination can be compared.
"""

from __future__ import annotations

import logging
import os
import stat

import pytest


def first_user_group():
    """A group the current user may chown files to, even when not root."""
    groups = sorted(os.getgroups())
    return groups[0] if groups else os.getgid()


class CopyTestEnv:
    """Test environment holding a source and a destination tree."""

    def __init__(self, tmpdir):
        self.tmpdir = str(tmpdir)
        self.src_dir = os.path.join(self.tmpdir, "src")
        self.dest_dir = os.path.join(self.tmpdir, "dest")
        os.mkdir(self.src_dir, 0o755)
        os.mkdir(self.dest_dir, 0o755)
        os.chmod(self.src_dir, 0o755)
        os.chmod(self.dest_dir, 0o755)

    def src(self, *parts):
        return os.path.join(self.src_dir, *parts)

    def dest(self, *parts):
        return os.path.join(self.dest_dir, *parts)

    def make_dir(self, path, mode=0o755):
        """Create a directory and its missing parents, setting mode on the last one."""
        os.makedirs(path, exist_ok=True)
        os.chmod(path, mode)

    def make_file(self, path, content="", mode=0o644):
        """Create a file with exact mode (not subject to umask)."""
        parent = os.path.dirname(path)
        if not os.path.isdir(parent):
            os.makedirs(parent)
        with open(path, "w") as f:
            f.write(content)
        os.chmod(path, mode)

    def make_link(self, path, target):
        os.symlink(target, path)

    def make_fifo(self, path):
        os.mkfifo(path, 0o644)

    def read(self, path):
        with open(path, "r") as f:
            return f.read()


def get_filesystem_state(root):
    """
    Get a snapshot of a tree.

    Returns a dict mapping paths relative to root to tuples:
    - ('dir', mode, uid, gid) for directories
    - ('file', content, mode, uid, gid) for files
    - ('link', target) for symlinks (perms not checked, usually 0o777)
    - ('other',) for anything else
    """
    state = {}
    for dir_path, dirs, files in os.walk(root, followlinks=False):
        rel_root = os.path.relpath(dir_path, root)
        if rel_root == ".":
            rel_root = ""

        for name in sorted(dirs + files):
            path = os.path.join(rel_root, name) if rel_root else name
            full_path = os.path.join(dir_path, name)
            st = os.lstat(full_path)
            mode = stat.S_IMODE(st.st_mode)

            if stat.S_ISLNK(st.st_mode):
                state[path] = ("link", os.readlink(full_path))
            elif stat.S_ISDIR(st.st_mode):
                state[path] = ("dir", mode, st.st_uid, st.st_gid)
            elif stat.S_ISREG(st.st_mode):
                with open(full_path, "rb") as f:
                    content = f.read()
                state[path] = ("file", content, mode, st.st_uid, st.st_gid)
            else:
                state[path] = ("other",)
    return state


@pytest.fixture
def env(tmp_path):
    """Fresh source/destination pair."""
    return CopyTestEnv(tmp_path)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Source/destination pair with HOME and cwd isolated from the user's rc files."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)

    yield CopyTestEnv(tmp_path)

    # configure_logging() attaches a handler bound to the captured stderr
    log = logging.getLogger("copyrec")
    for handler in list(log.handlers):
        if not isinstance(handler, logging.NullHandler):
            log.removeHandler(handler)
    log.setLevel(logging.NOTSET)
