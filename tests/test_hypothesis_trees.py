"""
Hypothesis-based tests copying randomly generated trees.

A full copy must reproduce the source exactly; a filtered copy must
contain the matching entries and nothing but their ancestor directories.
"""

import os
import tempfile

from hypothesis import given, settings, strategies as st

from conftest import CopyTestEnv, get_filesystem_state
from copyrec import copy_recurse


# =============================================================================
# Strategies for generating test data
# =============================================================================

# Small alphabet so that siblings and shared prefixes are common
path_component_st = st.text(alphabet="abc", min_size=1, max_size=3)

# Directories keep owner rwx so the tree stays traversable when not root
dir_mode_st = st.sampled_from([0o700, 0o711, 0o750, 0o755, 0o770, 0o777])
file_mode_st = st.sampled_from([0o400, 0o600, 0o640, 0o644, 0o700, 0o755])
link_target_st = st.sampled_from(["a", "../b", "c/a", "/nonexistent", "."])


@st.composite
def tree_st(draw, max_entries=8, max_depth=3):
    """Generate a tree as {relative path: node}.

    Nodes are ("dir", mode), ("file", content, mode) or ("link", target).
    Ancestors of every entry are directories.
    """
    tree = {}
    num_entries = draw(st.integers(min_value=0, max_value=max_entries))

    for _ in range(num_entries):
        components = draw(st.lists(path_component_st, min_size=1, max_size=max_depth))
        path = "/".join(components)
        parents = ["/".join(components[:i]) for i in range(1, len(components))]

        if path in tree or any(tree.get(p, ("dir",))[0] != "dir" for p in parents):
            continue

        for parent in parents:
            if parent not in tree:
                tree[parent] = ("dir", draw(dir_mode_st))

        kind = draw(st.sampled_from(["dir", "file", "file", "link"]))
        if kind == "dir":
            tree[path] = ("dir", draw(dir_mode_st))
        elif kind == "file":
            tree[path] = ("file", draw(st.binary(max_size=64)), draw(file_mode_st))
        else:
            tree[path] = ("link", draw(link_target_st))

    return tree


def create_tree(root, tree):
    # Parents sort before their children
    for rel_path in sorted(tree):
        node = tree[rel_path]
        path = os.path.join(root, *rel_path.split("/"))
        if node[0] == "dir":
            os.mkdir(path)
            os.chmod(path, node[1])
        elif node[0] == "file":
            with open(path, "wb") as f:
                f.write(node[1])
            os.chmod(path, node[2])
        else:
            os.symlink(node[1], path)


def ancestors(rel_path):
    parts = rel_path.split(os.sep)
    return {os.path.join(*parts[:i]) for i in range(1, len(parts))}


class TestRandomTrees:
    @settings(max_examples=50, deadline=None)
    @given(tree=tree_st())
    def test_full_copy_reproduces_source(self, tree):
        """Without policies the destination equals the source."""
        with tempfile.TemporaryDirectory() as tmpdir:
            env = CopyTestEnv(tmpdir)
            create_tree(env.src_dir, tree)

            copy_recurse(env.src_dir, env.dest_dir)

            assert get_filesystem_state(env.dest_dir) == get_filesystem_state(env.src_dir)

    @settings(max_examples=50, deadline=None)
    @given(tree=tree_st(), name=path_component_st)
    def test_unrelated_destination_entries_survive(self, tree, name):
        """Entries whose names cannot occur in the source are never touched."""
        with tempfile.TemporaryDirectory() as tmpdir:
            env = CopyTestEnv(tmpdir)
            create_tree(env.src_dir, tree)
            env.make_file(env.dest("keep-" + name), "kept", 0o600)
            env.make_dir(env.dest("keep-dir"), 0o700)

            copy_recurse(env.src_dir, env.dest_dir)

            state = get_filesystem_state(env.dest_dir)
            assert env.read(env.dest("keep-" + name)) == "kept"
            assert state["keep-dir"][:2] == ("dir", 0o700)
            for rel_path, entry in get_filesystem_state(env.src_dir).items():
                assert state[rel_path] == entry

    @settings(max_examples=50, deadline=None)
    @given(tree=tree_st(), suffix=st.sampled_from(["a", "b", "c"]))
    def test_file_policy_copies_matches_and_their_ancestors(self, tree, suffix):
        with tempfile.TemporaryDirectory() as tmpdir:
            env = CopyTestEnv(tmpdir)
            create_tree(env.src_dir, tree)
            src_state = get_filesystem_state(env.src_dir)

            copy_recurse(
                env.src_dir,
                env.dest_dir,
                match_file=lambda path: path.endswith(suffix),
            )

            matched = {
                rel_path
                for rel_path, entry in src_state.items()
                if entry[0] != "dir" and rel_path.endswith(suffix)
            }
            expected = set(matched)
            for rel_path in matched:
                expected |= ancestors(rel_path)

            dest_state = get_filesystem_state(env.dest_dir)
            assert set(dest_state) == expected
            for rel_path in expected:
                assert dest_state[rel_path] == src_state[rel_path]
