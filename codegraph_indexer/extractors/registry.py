"""
Extension → language → extractor lookup.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Optional

from .base import LanguageExtractor

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".pyw": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".rb": "ruby",
    ".php": "php",
    ".sh": "shell",
    ".bash": "shell",
    ".zsh": "shell",
}


def detect_language(file_path: str) -> Optional[str]:
    """
    Return the language name for *file_path*, or None if unknown.

    Only the extension is examined.  A known language is not necessarily
    indexable; see :meth:`ExtractorRegistry.for_path`.
    """
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext)


class ExtractorRegistry:
    """
    Holds one :class:`LanguageExtractor` per language.

    Callers ask for an extractor by path and never switch on the language
    themselves; supporting a new language means registering a new extractor.
    """

    def __init__(self, extractors: Iterable[LanguageExtractor] = ()) -> None:
        self._by_language: dict[str, LanguageExtractor] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: LanguageExtractor) -> None:
        if not extractor.language:
            raise ValueError(f"{type(extractor).__name__} does not declare a language")
        if extractor.language in self._by_language:
            logger.debug("Replacing extractor for %s", extractor.language)
        self._by_language[extractor.language] = extractor

    @property
    def languages(self) -> list[str]:
        return sorted(self._by_language)

    @property
    def extensions(self) -> set[str]:
        exts: set[str] = set()
        for extractor in self._by_language.values():
            exts.update(extractor.extensions)
        return exts

    def for_language(self, language: str) -> Optional[LanguageExtractor]:
        return self._by_language.get(language)

    def for_path(self, file_path: str) -> Optional[LanguageExtractor]:
        """Return the extractor able to handle *file_path*, or None."""
        language = detect_language(file_path)
        extractor = self._by_language.get(language) if language else None
        if extractor is not None and extractor.supports(file_path):
            return extractor
        return None


def default_registry() -> ExtractorRegistry:
    """Registry with every built-in extractor."""
    from .python import PythonExtractor

    return ExtractorRegistry([PythonExtractor()])
