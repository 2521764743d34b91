"""Tests for resolving DAG IDs to files in local and object store trees."""

from unittest.mock import Mock

import pytest

from dagdeploy.exceptions import IgnoreFileError, ResolutionError
from dagdeploy.resolver import LocalFileTree, ObjectStoreTree, TreeResolver, dag_id_for, single_paths


class RecordingTree(LocalFileTree):
    """LocalFileTree that remembers which directories the walk entered."""

    def __init__(self, root):
        super().__init__(root)
        self.visited = []

    def walk(self):
        for entry in super().walk():
            self.visited.append(entry[0])
            yield entry


class TestDagIdFor:
    """Test DAG ID derivation from file names."""

    def test_python_files_map_to_their_stem(self):
        assert dag_id_for("daily_etl.py") == "daily_etl"

    def test_other_files_are_not_dags(self):
        assert dag_id_for("daily_etl.sql") is None
        assert dag_id_for(".py") is None


class TestLocalResolution:
    """Test TreeResolver against a local DAGs folder."""

    def test_empty_candidates_skip_the_walk(self):
        tree = Mock()
        assert TreeResolver().resolve(tree, set()) == {}
        tree.walk.assert_not_called()

    def test_one_file_per_candidate_resolves(self, make_tree):
        root = make_tree({"a.py": "", "team/b.py": "", "team/nested/c.py": "", "other.py": ""})

        resolution = TreeResolver().resolve(LocalFileTree(root), {"a", "b", "c"})

        assert resolution == {"a": ["a.py"], "b": ["team/b.py"], "c": ["team/nested/c.py"]}

    def test_missing_and_ambiguous_dags_are_all_reported(self, make_tree):
        root = make_tree({"a.py": "", "x/b.py": "", "y/b.py": "", "x/d.py": "", "z/d.py": ""})

        with pytest.raises(ResolutionError) as exc_info:
            TreeResolver().resolve(LocalFileTree(root), {"a", "b", "c", "d"})

        error = exc_info.value
        assert error.dag_ids == ["b", "c", "d"]
        assert error.defects["b"] == "ambiguous file for DAG b: x/b.py, y/b.py"
        assert error.defects["c"] == "no file found for DAG c"
        assert error.resolution["a"] == ["a.py"]

    def test_non_python_files_do_not_count(self, make_tree):
        root = make_tree({"a.py": "", "sql/a.sql": "", "docs/a.md": ""})
        assert TreeResolver().resolve(LocalFileTree(root), {"a"}) == {"a": ["a.py"]}

    def test_tmp_directories_are_ignored(self, make_tree):
        root = make_tree({"tmp/a.py": "", "team/tmp/a.py": "", "team/a.py": ""})
        assert TreeResolver().resolve(LocalFileTree(root), {"a"}) == {"a": ["team/a.py"]}

    def test_parent_rule_applies_to_nested_children(self, make_tree):
        root = make_tree(
            {
                ".airflowignore": "team/old\n",
                "team/old/deeper/b.py": "",
                "team/new/b.py": "",
            }
        )
        assert TreeResolver().resolve(LocalFileTree(root), {"b"}) == {"b": ["team/new/b.py"]}

    def test_nested_rule_does_not_leak_to_siblings(self, make_tree):
        root = make_tree(
            {
                "team_a/.airflowignore": "# retired\nold\n",
                "team_a/old/c.py": "",
                "team_a/current/c.py": "",
                "team_b/old/d.py": "",
            }
        )

        resolution = TreeResolver().resolve(LocalFileTree(root), {"c", "d"})

        assert resolution == {"c": ["team_a/current/c.py"], "d": ["team_b/old/d.py"]}

    def test_glob_rules_match_at_any_depth(self, make_tree):
        root = make_tree(
            {
                ".airflowignore": "**/drafts/**\n",
                "team/drafts/e.py": "",
                "team/e.py": "",
            }
        )
        assert TreeResolver().resolve(LocalFileTree(root), {"e"}) == {"e": ["team/e.py"]}

    def test_ignored_directories_are_not_descended(self, make_tree):
        root = make_tree({".airflowignore": "vendor\n", "vendor/lib/deep/a.py": "", "a.py": ""})
        tree = RecordingTree(root)

        assert TreeResolver().resolve(tree, {"a"}) == {"a": ["a.py"]}
        assert "vendor" not in tree.visited
        assert "vendor/lib" not in tree.visited

    def test_invalid_ignore_pattern_raises(self, make_tree):
        root = make_tree({".airflowignore": "broken(\n", "a.py": ""})
        with pytest.raises(IgnoreFileError):
            TreeResolver().resolve(LocalFileTree(root), {"a"})

    def test_undecodable_ignore_file_raises(self, make_tree):
        root = make_tree({"a.py": ""})
        (root / ".airflowignore").write_bytes(b"\xff\xfeold\n")

        with pytest.raises(IgnoreFileError, match="not valid UTF-8"):
            TreeResolver().resolve(LocalFileTree(root), {"a"})

    def test_ignored_copy_leaves_other_path_recorded(self, make_tree):
        root = make_tree({".airflowignore": "legacy/a\\.py\n", "a.py": "", "legacy/a.py": ""})

        assert TreeResolver().resolve(LocalFileTree(root), {"a"}) == {"a": ["a.py"]}

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TreeResolver().resolve(LocalFileTree(tmp_path / "absent"), {"a"})


class TestObjectStoreResolution:
    """Test TreeResolver against a prefix in an object store."""

    def test_remote_tree_honours_ignore_files(self, fake_store):
        fake_store.objects.update(
            {
                "dags/a.py": b"",
                "dags/.airflowignore": b"old\n",
                "dags/old/b.py": b"",
                "dags/new/b.py": b"",
                "plugins/a.py": b"",
            }
        )
        tree = ObjectStoreTree(fake_store, "dags")

        resolution = TreeResolver().resolve(tree, {"a", "b"})

        assert resolution == {"a": ["a.py"], "b": ["new/b.py"]}

    def test_undecodable_remote_ignore_file_raises(self, fake_store):
        fake_store.objects.update({"dags/a.py": b"", "dags/.airflowignore": b"\xff\xfeold\n"})

        with pytest.raises(IgnoreFileError, match="gs://test-bucket/dags/.airflowignore"):
            TreeResolver().resolve(ObjectStoreTree(fake_store, "dags"), {"a"})

    def test_listing_happens_once_per_tree(self, fake_store):
        fake_store.objects.update({"dags/a.py": b"", "dags/b.py": b""})
        tree = ObjectStoreTree(fake_store, "dags")

        TreeResolver().resolve(tree, {"a"})
        TreeResolver().resolve(tree, {"b"})

        assert [call for call in fake_store.calls if call[0] == "list"] == [("list", "dags/")]

    def test_key_for_prefixes_relative_paths(self, fake_store):
        tree = ObjectStoreTree(fake_store, "dags/")
        assert tree.key_for("team/a.py") == "dags/team/a.py"
        assert tree.label == "gs://test-bucket/dags"


class TestSinglePaths:
    """Test unnesting of validated resolutions."""

    def test_keeps_single_element_entries(self):
        assert single_paths({"a": ["a.py"], "b": [], "c": ["x.py", "y.py"]}) == {"a": "a.py"}
