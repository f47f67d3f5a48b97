"""
Unit tests for codegraph_indexer.extractors.registry
"""

from __future__ import annotations

import pytest


def _fake_extractor(language="python", extensions=(".py",)):
    from codegraph_indexer.extractors import LanguageExtractor
    from codegraph_indexer.graph.models import ExtractionResult

    class FakeExtractor(LanguageExtractor):
        def extract(self, source_text, file_path, last_modified=None):
            return ExtractionResult(file_path=file_path, language=self.language)

    FakeExtractor.language = language
    FakeExtractor.extensions = extensions
    return FakeExtractor()


class TestDetectLanguage:
    @pytest.mark.parametrize("path, expected", [
        ("a.py", "python"),
        ("pkg/types.PYI", "python"),
        ("web/app.tsx", "typescript"),
        ("main.go", "go"),
        ("README.md", None),
        ("Makefile", None),
    ])
    def test_detect_language(self, path, expected):
        from codegraph_indexer.extractors import detect_language
        assert detect_language(path) == expected


class TestExtractorRegistry:
    def test_for_path(self):
        from codegraph_indexer.extractors import ExtractorRegistry
        fake = _fake_extractor()
        reg = ExtractorRegistry([fake])
        assert reg.for_path("src/a.py") is fake
        assert reg.for_path("src/a.pyw") is None
        assert reg.for_path("src/a.js") is None
        assert reg.languages == ["python"]
        assert reg.extensions == {".py"}

    def test_register_replaces_language(self):
        from codegraph_indexer.extractors import ExtractorRegistry
        first, second = _fake_extractor(), _fake_extractor(extensions=(".py", ".pyw"))
        reg = ExtractorRegistry([first])
        reg.register(second)
        assert reg.for_language("python") is second
        assert reg.for_path("x.pyw") is second

    def test_language_required(self):
        from codegraph_indexer.extractors import ExtractorRegistry
        with pytest.raises(ValueError):
            ExtractorRegistry([_fake_extractor(language="")])

    def test_default_registry_has_python(self):
        pytest.importorskip("tree_sitter_python")
        from codegraph_indexer.extractors import default_registry
        reg = default_registry()
        assert reg.languages == ["python"]
        assert reg.for_path("a.pyi") is not None
