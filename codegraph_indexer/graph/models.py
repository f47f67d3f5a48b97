"""
Graph data model shared by extractors, the accumulator and the resolver.

Nodes and relationships serialise to the wire shape expected by the
knowledge store (``id``/``label``/``properties`` and
``source_node_id``/``target_node_id``/``relationship_type``/``properties``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class UnresolvedReference:
    """
    Symbolic key for a relationship target that is not known at extraction
    time (a callee, a base class, a raised exception, an imported module).

    ``disambiguator`` is the path of the referencing file; it drives the
    same-file preference and relative import resolution.
    """
    label: str
    name: str
    disambiguator: str = ""


@dataclass
class Node:
    """A typed graph vertex representing one code entity."""
    id: str
    label: str
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        props = self.properties
        return str(
            props.get("name")
            or props.get("moduleName")
            or props.get("calleeName")
            or props.get("path")
            or ""
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "properties": dict(self.properties)}


@dataclass
class Relationship:
    """A typed, directed edge.  The target may not exist yet (dangling)."""
    source_node_id: str
    target_node_id: str
    relationship_type: str
    properties: dict[str, Any] = field(default_factory=dict)
    unresolved: Optional[UnresolvedReference] = None

    @property
    def is_speculative(self) -> bool:
        return self.unresolved is not None

    def key(self) -> tuple:
        """Order-independent comparison key (properties included)."""
        return (
            self.source_node_id,
            self.target_node_id,
            self.relationship_type,
            tuple(sorted((k, repr(v)) for k, v in self.properties.items())),
        )

    def to_dict(self) -> dict:
        return {
            "source_node_id": self.source_node_id,
            "target_node_id": self.target_node_id,
            "relationship_type": self.relationship_type,
            "properties": dict(self.properties),
        }


@dataclass
class ExtractionResult:
    """Graph candidates produced by one extractor run over one file."""
    file_path: str
    language: str
    nodes: list[Node] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def file_node(self) -> Optional[Node]:
        for node in self.nodes:
            if node.label == "File":
                return node
        return None

    def symbol_nodes(self) -> list[Node]:
        return [n for n in self.nodes if n.label != "File"]


@dataclass
class GraphSnapshot:
    """Immutable-by-convention copy of an accumulator's contents."""
    nodes: list[Node] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "relationships": [r.to_dict() for r in self.relationships],
        }
