"""
codegraph_indexer — index source code into a schema-constrained knowledge graph.

Public API for library usage::

    from codegraph_indexer import Config, build_indexer

    indexer = build_indexer(Config.load(), project_root=".")
    summary = indexer.index_directory()
"""

__version__ = "0.1.0"

from .config import Config
from .indexer import FileOutcome, Indexer, IndexSummary, build_indexer

__all__ = ["Config", "FileOutcome", "Indexer", "IndexSummary", "build_indexer"]
