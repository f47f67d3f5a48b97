"""
Unit tests for codegraph_indexer.synthesizer
"""

from __future__ import annotations

import pytest


def _graph(result):
    from codegraph_indexer.graph import GraphAccumulator
    acc = GraphAccumulator()
    acc.add_nodes(result.nodes)
    acc.add_relationships(result.relationships)
    return acc


def _file(path="pkg/util.py"):
    from codegraph_indexer.extractors.base import FragmentBuilder
    b = FragmentBuilder(path, "python")
    file_id = b.add_node("File", {
        "path": path, "language": "python", "size": 120, "hash": "abcdef0123456789",
    })
    return b, file_id


@pytest.fixture()
def synth():
    from codegraph_indexer.synthesizer import ContentSynthesizer
    return ContentSynthesizer()


class TestRenderDocument:
    def test_header(self, synth):
        b, _ = _file()
        doc = synth.render_document("pkg/util.py", _graph(b.build()))
        assert doc.startswith("# Code File: pkg/util.py\n")
        assert "**Language:** python" in doc
        assert "**Size:** 120 bytes" in doc
        assert "**Hash:** abcdef01" in doc
        assert "## Imports" not in doc

    def test_imports_capped_at_ten(self, synth):
        b, file_id = _file()
        for i in range(15):
            imp = b.add_node("Import", {"moduleName": f"mod{i}", "importedNames": [], "line": i + 1})
            b.relate(file_id, imp, "IMPORTS")
        doc = synth.render_document("pkg/util.py", _graph(b.build()))
        assert "## Imports (15)" in doc
        assert "- mod9" in doc
        assert "- mod10" not in doc
        assert "... and 5 more" in doc

    def test_imported_names_listed(self, synth):
        b, file_id = _file()
        imp = b.add_node("Import", {"moduleName": "typing", "importedNames": ["Any", "Optional"],
                                    "line": 1})
        b.relate(file_id, imp, "IMPORTS")
        doc = synth.render_document("pkg/util.py", _graph(b.build()))
        assert "- typing (Any, Optional)" in doc
        assert "... and" not in doc

    def test_classes_and_functions(self, synth):
        b, file_id = _file()
        cls = b.add_node("Class", {"name": "Cache", "language": "python",
                                   "startLine": 3, "endLine": 20})
        b.relate(cls, file_id, "DEFINED_IN")
        b.relate_unresolved(cls, "EXTENDS", "Class", "dict")
        get = b.add_node("Function", {"name": "get", "signature": "def get(self, key)",
                                      "language": "python", "startLine": 5, "endLine": 8})
        b.relate(get, file_id, "DEFINED_IN")
        b.relate(cls, get, "HAS_METHOD")
        dec = b.add_node("Decorator", {"name": "lru_cache", "line": 4})
        b.relate(get, dec, "DECORATED_WITH")
        for i, callee in enumerate(["a", "b", "c", "d", "e", "f", "g"]):
            b.relate_unresolved(get, "CALLS", "Function", callee, {"line": 6 + i})

        doc = synth.render_document("pkg/util.py", _graph(b.build()))
        assert "## Classes (1)" in doc
        assert "### Cache" in doc
        assert "Lines 3-20" in doc
        assert "Methods: get" in doc
        assert "Extends: dict" in doc
        assert "## Functions (1)" in doc
        assert "```python\ndef get(self, key)\n```" in doc
        assert "Calls: a, b, c, d, e, ... (2 more)" in doc
        assert "Decorators: @lru_cache" in doc
        assert doc.index("## Classes") < doc.index("## Functions")

    def test_source_section(self, synth):
        b, _ = _file()
        doc = synth.render_document("pkg/util.py", _graph(b.build()), source_text="x = 1")
        assert doc.endswith("## Full Source Code\n```python\nx = 1\n```\n")

    def test_missing_file_node_renders_stub(self, synth):
        from codegraph_indexer.graph import GraphAccumulator
        assert synth.render_document("gone.py", GraphAccumulator()) == "File: gone.py"

    def test_deterministic(self, synth):
        b, file_id = _file()
        fn = b.add_node("Function", {"name": "f", "language": "python",
                                     "startLine": 1, "endLine": 2})
        b.relate(fn, file_id, "DEFINED_IN")
        result = b.build()
        assert synth.render_document("pkg/util.py", _graph(result)) == \
            synth.render_document("pkg/util.py", _graph(result))


class TestRenderMetadata:
    def test_topics_and_tags(self, synth):
        b, file_id = _file("src/pkg/util.py")
        fn = b.add_node("Function", {"name": "f", "language": "python",
                                     "startLine": 1, "endLine": 2})
        b.relate(fn, file_id, "DEFINED_IN")
        meta = synth.render_metadata("src/pkg/util.py", _graph(b.build()))
        assert meta["filePath"] == "src/pkg/util.py"
        assert meta["language"] == "python"
        assert meta["topics"] == ["code", "python", "src", "pkg", "util", "functions"]
        assert meta["tags"] == ["💻", "📄", "🐍"]

    def test_topics_capped_and_unique(self, synth):
        path = "a/b/c/d/e/f/g/h/i/python/util.py"
        b, _ = _file(path)
        topics = synth.render_metadata(path, _graph(b.build()))["topics"]
        assert len(topics) == 10
        assert len(set(topics)) == 10
        assert topics[:3] == ["code", "python", "a"]

    def test_unknown_file(self, synth):
        from codegraph_indexer.graph import GraphAccumulator
        meta = synth.render_metadata("x.py", GraphAccumulator())
        assert meta == {"filePath": "x.py", "language": "unknown", "topics": ["code"]}
