"""
Language extractors — source text to graph candidates.
"""

from .base import FragmentBuilder, LanguageExtractor
from .registry import EXTENSION_TO_LANGUAGE, ExtractorRegistry, default_registry, detect_language

__all__ = [
    "EXTENSION_TO_LANGUAGE",
    "ExtractorRegistry",
    "FragmentBuilder",
    "LanguageExtractor",
    "default_registry",
    "detect_language",
]
