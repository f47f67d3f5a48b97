"""
Language extractor contract and shared tree-sitter helpers.

Every language implements :class:`LanguageExtractor`; callers select an
implementation by file extension through
:class:`~codegraph_indexer.extractors.registry.ExtractorRegistry` and never
branch on the language themselves.

Uses tree-sitter >= 0.22 API with individual language packages.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..graph.models import ExtractionResult, Node, Relationship, UnresolvedReference
from ..identity import node_id, placeholder_id

logger = logging.getLogger(__name__)

# label -> stats key
_STAT_KEYS: dict[str, str] = {
    "Function": "functions",
    "Class": "classes",
    "Import": "imports",
    "Export": "exports",
    "Variable": "variables",
    "Comment": "comments",
    "Decorator": "decorators",
    "CallSite": "call_sites",
    "Package": "packages",
}


# ---------------------------------------------------------------------------
# tree-sitter language / node helpers
# ---------------------------------------------------------------------------

# Cache Language objects to avoid repeated construction
_LANG_CACHE: dict[str, object] = {}


def load_ts_language(name: str, factory: Callable[[], Any]):
    """
    Return the tree_sitter.Language for *name*, building it from *factory*
    (the grammar package's ``language()`` function) on first use.
    """
    if name in _LANG_CACHE:
        return _LANG_CACHE[name]
    import tree_sitter as ts  # type: ignore
    lang_obj = ts.Language(factory())
    _LANG_CACHE[name] = lang_obj
    return lang_obj


def node_text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def start_line(node) -> int:
    """1-indexed first line of *node*."""
    return node.start_point[0] + 1


def end_line(node) -> int:
    """1-indexed last line of *node*."""
    return node.end_point[0] + 1


def first_error(node):
    """Return the first ERROR or missing node under *node*, or None."""
    if node.type == "ERROR" or node.is_missing:
        return node
    if not node.has_error:
        return None
    for child in node.children:
        found = first_error(child)
        if found is not None:
            return found
    return node


# ---------------------------------------------------------------------------
# Fragment builder
# ---------------------------------------------------------------------------

class FragmentBuilder:
    """
    Collects the nodes and relationships of one file, stamping each node
    with its deterministic ID.

    Node IDs are computed from the node's properties plus the file path, so
    a construct seen twice (same key) is recorded once.
    """

    def __init__(self, file_path: str, language: str) -> None:
        self.file_path = file_path
        self.language = language
        self.nodes: list[Node] = []
        self.relationships: list[Relationship] = []
        self._by_id: dict[str, Node] = {}

    def node_id_for(self, label: str, properties: dict) -> str:
        return node_id(label, {"filePath": self.file_path, **properties})

    def has(self, nid: str) -> bool:
        return nid in self._by_id

    def get(self, nid: str) -> Optional[Node]:
        return self._by_id.get(nid)

    def add_node(self, label: str, properties: dict) -> str:
        """Add a node (if its ID is new) and return its ID."""
        props = {k: v for k, v in properties.items() if v is not None}
        nid = self.node_id_for(label, props)
        if nid not in self._by_id:
            node = Node(id=nid, label=label, properties=props)
            self.nodes.append(node)
            self._by_id[nid] = node
        return nid

    def relate(self, source_id: str, target_id: str, rel_type: str,
               properties: Optional[dict] = None) -> None:
        self.relationships.append(
            Relationship(source_id, target_id, rel_type, dict(properties or {}))
        )

    def relate_unresolved(self, source_id: str, rel_type: str, label: str, name: str,
                          properties: Optional[dict] = None) -> None:
        """
        Add a relationship to a target only known by (label, name).

        The target ID is a placeholder keyed with an ``unknown`` origin file;
        the :class:`UnresolvedReference` (carrying this file as its
        disambiguator) lets the resolver rematch it later.
        """
        props = {"targetName": name, "targetLabel": label, "resolved": False}
        props.update(properties or {})
        self.relationships.append(Relationship(
            source_node_id=source_id,
            target_node_id=placeholder_id(label, name),
            relationship_type=rel_type,
            properties=props,
            unresolved=UnresolvedReference(label, name, self.file_path),
        ))

    def build(self) -> ExtractionResult:
        stats: dict[str, int] = {key: 0 for key in _STAT_KEYS.values()}
        for node in self.nodes:
            key = _STAT_KEYS.get(node.label)
            if key:
                stats[key] += 1
        stats["relationships"] = len(self.relationships)
        return ExtractionResult(
            file_path=self.file_path,
            language=self.language,
            nodes=list(self.nodes),
            relationships=list(self.relationships),
            stats=stats,
        )


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class LanguageExtractor(ABC):
    """
    Turns one file's source text into candidate graph nodes/relationships.

    Implementations must emit exactly one File node, a DEFINED_IN edge from
    every symbol to it, and raise
    :class:`~codegraph_indexer.errors.ExtractionError` when the file does not
    parse.  They hold no state between calls other than the parser itself.
    """

    #: Language name written to the ``language`` property of emitted nodes.
    language: str = ""
    #: File extensions (lower-case, with dot) handled by this extractor.
    extensions: tuple[str, ...] = ()

    def supports(self, file_path: str) -> bool:
        return os.path.splitext(file_path)[1].lower() in self.extensions

    @abstractmethod
    def extract(
        self,
        source_text: str,
        file_path: str,
        last_modified: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Extract graph candidates from *source_text*.

        Parameters
        ----------
        source_text:
            Full UTF-8 decoded file contents.
        file_path:
            Path recorded on the File node and used in every node ID.
        last_modified:
            Optional ISO-8601 timestamp for the File node.

        Raises
        ------
        ExtractionError
            If the file has a syntax error.
        """
