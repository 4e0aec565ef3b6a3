"""
Tests for resolve_ownership() and ownership of copied entries.
"""

import os
from types import SimpleNamespace

import pytest

from conftest import first_user_group
from copyrec import CopyRecurse, CopyRecurseProgrammingError, resolve_ownership
from copyrec.walk import walk_path


class TestResolveOwnership:
    def test_both_overrides(self):
        assert resolve_ownership(10, 20, None) == (10, 20)

    def test_overrides_win_over_source(self):
        src = SimpleNamespace(st_uid=1, st_gid=2)
        assert resolve_ownership(10, 20, src) == (10, 20)

    def test_inherit_both(self):
        src = SimpleNamespace(st_uid=1, st_gid=2)
        assert resolve_ownership(None, None, src) == (1, 2)

    def test_override_uid_only(self):
        src = SimpleNamespace(st_uid=1, st_gid=2)
        assert resolve_ownership(10, None, src) == (10, 2)

    def test_override_gid_only(self):
        src = SimpleNamespace(st_uid=1, st_gid=2)
        assert resolve_ownership(None, 20, src) == (1, 20)

    def test_zero_is_an_override(self):
        src = SimpleNamespace(st_uid=1, st_gid=2)
        assert resolve_ownership(0, 0, src) == (0, 0)

    def test_accepts_entries(self, env):
        env.make_file(env.src("file"))
        st = os.lstat(env.src("file"))
        entries = []

        walk_path(env.src("file"), lambda rel_path, entry: entries.append(entry))

        assert resolve_ownership(None, None, entries[0]) == (st.st_uid, st.st_gid)

    @pytest.mark.parametrize("uid,gid", [(None, None), (None, 5), (5, None)])
    def test_missing_source_is_a_programming_error(self, uid, gid):
        with pytest.raises(CopyRecurseProgrammingError):
            resolve_ownership(uid, gid, None)


class TestCopiedOwnership:
    def test_symlink_ownership_is_left_alone(self, env, monkeypatch):
        """Only directories and regular files are chowned."""
        env.make_link(env.src("link"), "target")
        env.make_file(env.src("file"))
        chowned = []
        real_lchown = os.lchown
        monkeypatch.setattr(
            os, "lchown", lambda path, *args: (chowned.append(path), real_lchown(path, *args))
        )

        CopyRecurse(env.src_dir, env.dest_dir).run()

        assert env.dest("link") not in chowned
        assert chowned == [env.dest_dir]

    def test_gid_override_applies_to_dirs_and_files(self, env):
        gid = first_user_group()
        env.make_dir(env.src("sub"))
        env.make_file(env.src("sub", "file"))

        CopyRecurse(env.src_dir, env.dest_dir, gid=gid).run()

        for path in (env.dest_dir, env.dest("sub"), env.dest("sub", "file")):
            st = os.lstat(path)
            assert st.st_gid == gid
            assert st.st_uid == os.getuid()
