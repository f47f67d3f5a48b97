"""
Unit tests for codegraph_indexer.indexer

Runs the real Python extractor over small throw-away projects; the
knowledge store and schema manager are MagicMocks.
"""

from __future__ import annotations

import itertools
import os
from unittest.mock import MagicMock

import pytest

pytest.importorskip("tree_sitter_python")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def project(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "util.py").write_text(
        "def helper(x):\n    return x\n", encoding="utf-8"
    )
    (tmp_path / "app.py").write_text(
        "from pkg.util import helper\n\n\ndef run():\n    return helper(1)\n",
        encoding="utf-8",
    )
    (tmp_path / "broken.py").write_text("def broken(:\n    pass\n", encoding="utf-8")
    return tmp_path


def _store():
    counter = itertools.count(1)
    store = MagicMock()
    store.add.side_effect = lambda content, metadata, graph: f"mem-{next(counter)}"
    store.delete_memory.return_value = True
    return store


def _indexer(root, store=None, **kwargs):
    from codegraph_indexer.extractors import default_registry
    from codegraph_indexer.indexer import Indexer
    from codegraph_indexer.manifest import Manifest
    from codegraph_indexer.schema import build_code_schema

    kwargs.setdefault("manifest", Manifest(str(root / ".codegraph" / "index.db")))
    return Indexer(
        project_root=str(root),
        store=store or _store(),
        schema_manager=MagicMock(),
        schema=build_code_schema(),
        extractors=default_registry(),
        publish_delay=0,
        **kwargs,
    )


def _published(store, path):
    """Return (content, metadata, graph) of the last publish of *path*."""
    for call in reversed(store.add.call_args_list):
        content, metadata, graph = call[0]
        if metadata["filePath"] == path:
            return content, metadata, graph
    raise AssertionError(f"{path} was not published")


def _edges(graph, rel_type):
    return [
        (r.source_node_id, r.target_node_id, r.properties)
        for r in graph.relationships if r.relationship_type == rel_type
    ]


# ---------------------------------------------------------------------------
# Directory runs
# ---------------------------------------------------------------------------

class TestIndexDirectory:
    def test_partial_failure(self, project):
        store = _store()
        summary = _indexer(project, store).index_directory()
        assert (summary.success, summary.skipped, summary.failed) == (2, 0, 1)
        assert summary.total == 3
        assert len(summary.errors) == 1
        assert "broken.py" in summary.errors[0]
        assert "syntax error" in summary.errors[0]
        assert store.add.call_count == 2
        failed = [o for o in summary.outcomes if o.status == "failed"]
        assert [o.path for o in failed] == ["broken.py"]

    def test_cross_file_references_resolved(self, project):
        store = _store()
        _indexer(project, store).index_directory()
        _, metadata, graph = _published(store, "app.py")
        assert metadata["language"] == "python"

        calls = _edges(graph, "CALLS")
        fn_calls = [c for c in calls if c[0] == "func_app_py_run_4"]
        assert fn_calls[0][1] == "func_pkg_util_py_helper_1"
        assert fn_calls[0][2]["resolved"] is True
        assert ("func_pkg_util_py_helper_1", "func_app_py_run_4", {"line": 5}) in \
            _edges(graph, "CALLED_BY")
        imports_from = _edges(graph, "IMPORTS_FROM")
        assert imports_from[0][1] == "file_pkg_util_py"

    def test_document_contents(self, project):
        store = _store()
        _indexer(project, store).index_directory()
        content, metadata, graph = _published(store, "pkg/util.py")
        assert content.startswith("# Code File: pkg/util.py")
        assert "### helper" in content
        assert "## Full Source Code" in content
        assert metadata["topics"][:2] == ["code", "python"]
        assert any(n.label == "File" for n in graph.nodes)

    def test_include_source_off(self, project):
        store = _store()
        _indexer(project, store, include_source=False).index_directory()
        content, _, _ = _published(store, "pkg/util.py")
        assert "## Full Source Code" not in content

    def test_schema_ensured_before_any_file(self, project):
        from codegraph_indexer.errors import ConfigurationError
        store = _store()
        progress = MagicMock()
        indexer = _indexer(project, store, progress_callback=progress)
        indexer.schema_manager.ensure_schema.side_effect = ConfigurationError("no schema")
        with pytest.raises(ConfigurationError):
            indexer.index_directory()
        store.add.assert_not_called()
        progress.assert_not_called()

    def test_progress_callback(self, project):
        progress = MagicMock()
        _indexer(project, progress_callback=progress).index_directory()
        assert [c[0] for c in progress.call_args_list] == [
            (1, 3, "app.py"), (2, 3, "broken.py"), (3, 3, "pkg/util.py"),
        ]


class TestIncrementalRuns:
    def test_unchanged_files_are_skipped(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        summary = indexer.index_directory()
        assert (summary.success, summary.skipped, summary.failed) == (0, 2, 1)
        assert store.add.call_count == 2

    def test_force_republishes(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        summary = indexer.index_directory(force=True)
        assert summary.success == 2
        assert store.add.call_count == 4

    def test_force_rerun_publishes_identical_graphs(self, project):
        from collections import Counter
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        indexer.index_directory(force=True)
        assert store.add.call_count == 4
        by_path: dict[str, list] = {}
        for call in store.add.call_args_list:
            _, metadata, graph = call[0]
            by_path.setdefault(metadata["filePath"], []).append(graph)
        assert sorted(by_path) == ["app.py", "pkg/util.py"]
        for path, (first, second) in by_path.items():
            assert {n.id for n in first.nodes} == {n.id for n in second.nodes}, path
            assert Counter(r.key() for r in first.relationships) == \
                Counter(r.key() for r in second.relationships), path

    def test_manifest_write_failure_does_not_abort_the_batch(self, project, caplog):
        import logging
        import sqlite3
        store = _store()
        indexer = _indexer(project, store)
        indexer.manifest.upsert_file = MagicMock(
            side_effect=sqlite3.OperationalError("database is locked")
        )
        with caplog.at_level(logging.WARNING, logger="codegraph_indexer.indexer"):
            summary = indexer.index_directory()
        assert (summary.success, summary.skipped, summary.failed) == (2, 0, 1)
        assert store.add.call_count == 2
        assert indexer.manifest.upsert_file.call_count == 2
        assert "database is locked" in caplog.text

    def test_changed_file_retires_previous_document(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        old_id = indexer.manifest.get_file("pkg/util.py").memory_id

        (project / "pkg" / "util.py").write_text(
            "def helper(x):\n    return x * 2\n", encoding="utf-8"
        )
        summary = indexer.index_directory()
        assert summary.success == 1
        store.delete_memory.assert_called_once_with(old_id)
        assert indexer.manifest.get_file("pkg/util.py").memory_id != old_id

    def test_unchanged_definitions_resolve_through_manifest(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        (project / "app.py").write_text(
            "from pkg.util import helper\n\n\ndef run():\n    return helper(2)\n",
            encoding="utf-8",
        )
        indexer.index_directory()
        _, _, graph = _published(store, "app.py")
        fn_calls = [c for c in _edges(graph, "CALLS") if c[0] == "func_app_py_run_4"]
        assert fn_calls[0][1] == "func_pkg_util_py_helper_1"

    def test_deleted_file_is_pruned(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.index_directory()
        old_id = indexer.manifest.get_file("pkg/util.py").memory_id
        os.remove(project / "pkg" / "util.py")
        indexer.index_directory()
        store.delete_memory.assert_any_call(old_id)
        assert indexer.manifest.get_file("pkg/util.py") is None

    def test_publish_failure_is_not_recorded(self, project):
        from codegraph_indexer.errors import PublishError
        store = _store()
        store.add.side_effect = PublishError("HTTP 400: bad graph", 400)
        indexer = _indexer(project, store)
        summary = indexer.index_directory()
        assert summary.failed == 3
        assert any("publish failed" in e for e in summary.errors)
        assert indexer.manifest.get_all_indexed_paths() == []


class TestSelectionAndControl:
    def test_test_files_excluded_by_default(self, project):
        (project / "tests").mkdir()
        (project / "tests" / "test_app.py").write_text(
            "def test_run():\n    assert True\n", encoding="utf-8"
        )
        default = _indexer(project).index_directory()
        assert "tests/test_app.py" not in [o.path for o in default.outcomes]

        summary = _indexer(project, include_tests=True).index_directory()
        assert "tests/test_app.py" in [o.path for o in summary.outcomes]

    def test_gitignore_and_skip_dirs(self, project):
        from codegraph_indexer.extractors import default_registry
        from codegraph_indexer.indexer import walk_source_files
        (project / ".gitignore").write_text("scratch/\n*_old.py\n", encoding="utf-8")
        for rel in ("scratch/tmp.py", "node_modules/x.py", "app_old.py", "notes.txt"):
            target = project / rel
            target.parent.mkdir(exist_ok=True)
            target.write_text("x = 1\n", encoding="utf-8")
        files = walk_source_files(str(project), default_registry())
        assert files == ["app.py", "broken.py", "pkg/util.py"]

    def test_cancel_stops_the_run(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.progress_callback = lambda current, total, name: indexer.cancel()
        summary = indexer.index_directory()
        assert summary.cancelled is True
        assert summary.success == 0
        store.add.assert_not_called()
        assert summary.total == 3
        assert sorted(o.path for o in summary.outcomes) == ["app.py", "broken.py", "pkg/util.py"]
        assert all(o.status == "skipped" and o.error == "cancelled" for o in summary.outcomes)
        assert indexer.manifest.get_all_indexed_paths() == []

    def test_cancel_before_run_is_honored_once(self, project):
        store = _store()
        indexer = _indexer(project, store)
        indexer.cancel()
        summary = indexer.index_directory()
        assert summary.cancelled is True
        assert summary.skipped == 3
        store.add.assert_not_called()
        assert indexer.cancelled is False

        summary = indexer.index_directory()
        assert summary.cancelled is False
        assert (summary.success, summary.failed) == (2, 1)

    def test_index_single_file(self, project):
        store = _store()
        outcome = _indexer(project, store).index_file(str(project / "pkg" / "util.py"))
        assert outcome.status == "success"
        assert outcome.path == "pkg/util.py"
        assert outcome.memory_id == "mem-1"
        assert outcome.node_count > 0

    def test_unsupported_file_is_skipped(self, project):
        (project / "README.md").write_text("# hi\n", encoding="utf-8")
        outcome = _indexer(project).index_file("README.md")
        assert outcome.status == "skipped"

    def test_error_list_is_capped(self, project):
        for i in range(4):
            (project / f"bad{i}.py").write_text("def (:\n", encoding="utf-8")
        summary = _indexer(project, max_errors=2).index_directory()
        assert summary.failed == 5
        assert len(summary.errors) == 2


class TestTestFileDetection:
    @pytest.mark.parametrize("path, expected", [
        ("tests/test_app.py", True),
        ("pkg/test_mod.py", True),
        ("pkg/mod_test.py", True),
        ("conftest.py", True),
        ("web/app.spec.ts", True),
        ("pkg/testing_utils.py", False),
        ("pkg/mod.py", False),
    ])
    def test_is_test_file(self, path, expected):
        from codegraph_indexer.indexer import is_test_file
        assert is_test_file(path) is expected

    @pytest.mark.parametrize("path, expected", [
        ("proto/api_pb2.py", True),
        ("generated/models.py", True),
        ("pkg/models.py", False),
    ])
    def test_is_generated_file(self, path, expected):
        from codegraph_indexer.indexer import is_generated_file
        assert is_generated_file(path) is expected


def test_build_indexer_wires_manifest(tmp_path, monkeypatch):
    from codegraph_indexer.config import Config
    from codegraph_indexer.indexer import Indexer, build_indexer
    monkeypatch.delenv("KNOWLEDGE_STORE_API_KEY", raising=False)
    monkeypatch.delenv("CODEGRAPH_MANIFEST_DIR", raising=False)
    cfg = Config({"store": {"api_key": "k"}, "schema_cache_file": str(tmp_path / "cache.json")})
    indexer = build_indexer(cfg, project_root=str(tmp_path))
    assert isinstance(indexer, Indexer)
    assert indexer.manifest.db_path == os.path.join(str(tmp_path), ".codegraph", "index.db")
    assert indexer.schema_manager.cache_file == str(tmp_path / "cache.json")


def test_build_indexer_without_credentials(tmp_path, monkeypatch):
    from codegraph_indexer.config import Config
    from codegraph_indexer.errors import ConfigurationError
    from codegraph_indexer.indexer import build_indexer
    monkeypatch.delenv("KNOWLEDGE_STORE_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        build_indexer(Config(), project_root=str(tmp_path))
