"""
NetworkX-backed accumulator for the graph fragments of one publish unit.

Nodes are de-duplicated by ID (the first occurrence wins); relationships are
kept exactly as added, duplicates included, in insertion order.  Endpoints
that are not (yet) known nodes are allowed and show up as attribute-less
vertices in the underlying multigraph.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import networkx as nx  # type: ignore

from .models import GraphSnapshot, Node, Relationship

logger = logging.getLogger(__name__)


class GraphAccumulator:
    """
    Collects nodes and relationships and answers neighbourhood queries.

    The multigraph keeps one edge per relationship, keyed by insertion index,
    so traversal helpers return relationships in the order they were added.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self._index: dict[str, Node] = {}
        self._relationships: list[Relationship] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_nodes(self, nodes: Iterable[Node]) -> int:
        """Add *nodes*; returns how many were new."""
        added = 0
        for node in nodes:
            if node.id in self._index:
                logger.debug("Dropping duplicate node %s", node.id)
                continue
            self._index[node.id] = node
            self._g.add_node(node.id, label=node.label)
            added += 1
        return added

    def add_relationships(self, relationships: Iterable[Relationship]) -> None:
        for rel in relationships:
            key = len(self._relationships)
            self._relationships.append(rel)
            self._g.add_edge(
                rel.source_node_id,
                rel.target_node_id,
                key=key,
                type=rel.relationship_type,
            )

    def snapshot(self) -> GraphSnapshot:
        """Return copies of the current node and relationship lists."""
        return GraphSnapshot(
            nodes=list(self._index.values()),
            relationships=list(self._relationships),
        )

    def stats(self) -> dict:
        """
        Return aggregate counts.

        Returns
        -------
        dict
            Keys: node_count, relationship_count, by_label (dict),
            by_relationship_type (dict), dangling_count.
        """
        by_label: dict[str, int] = {}
        for node in self._index.values():
            by_label[node.label] = by_label.get(node.label, 0) + 1
        by_type: dict[str, int] = {}
        for rel in self._relationships:
            by_type[rel.relationship_type] = by_type.get(rel.relationship_type, 0) + 1
        return {
            "node_count": len(self._index),
            "relationship_count": len(self._relationships),
            "by_label": by_label,
            "by_relationship_type": by_type,
            "dangling_count": len(self.dangling_relationships()),
        }

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._index.get(node_id)

    def label_of(self, node_id: str) -> Optional[str]:
        node = self._index.get(node_id)
        return node.label if node is not None else None

    def outgoing(self, node_id: str, rel_type: Optional[str] = None) -> list[Relationship]:
        """Relationships starting at *node_id*, optionally of one type."""
        if not self._g.has_node(node_id):
            return []
        keys = sorted(k for _, _, k, t in self._g.out_edges(node_id, keys=True, data="type")
                      if rel_type is None or t == rel_type)
        return [self._relationships[k] for k in keys]

    def incoming(self, node_id: str, rel_type: Optional[str] = None) -> list[Relationship]:
        """Relationships ending at *node_id*, optionally of one type."""
        if not self._g.has_node(node_id):
            return []
        keys = sorted(k for _, _, k, t in self._g.in_edges(node_id, keys=True, data="type")
                      if rel_type is None or t == rel_type)
        return [self._relationships[k] for k in keys]

    def file_node(self, path: Optional[str] = None) -> Optional[Node]:
        """
        Return the File node for *path*, or the first File node when *path*
        is None.
        """
        for node in self._index.values():
            if node.label != "File":
                continue
            if path is None or node.properties.get("path") == path:
                return node
        return None

    def nodes_defined_in(self, file_id: str, label: Optional[str] = None) -> list[Node]:
        """Nodes with a DEFINED_IN edge to *file_id*, in insertion order."""
        seen: set[str] = set()
        found: list[Node] = []
        for rel in self.incoming(file_id, "DEFINED_IN"):
            node = self._index.get(rel.source_node_id)
            if node is None or node.id in seen:
                continue
            if label is not None and node.label != label:
                continue
            seen.add(node.id)
            found.append(node)
        return found

    def dangling_relationships(self) -> list[Relationship]:
        """Relationships whose source or target is not a known node."""
        return [
            rel for rel in self._relationships
            if rel.source_node_id not in self._index or rel.target_node_id not in self._index
        ]

    def __len__(self) -> int:
        return len(self._index)
