"""
Schema registry — the closed vocabulary of node and relationship types.

The registry is built once and never mutated; it is shared by reference
between every component that validates graph items.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from ..errors import SchemaViolation
from ..graph.models import Node, Relationship

PROPERTY_TYPES = frozenset({"string", "integer", "boolean", "array", "datetime"})


# ---------------------------------------------------------------------------
# Type specs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PropertySpec:
    """A single typed property of a node type."""
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""
    enum_values: tuple[str, ...] = ()

    def accepts(self, value: Any) -> bool:
        """Return True if *value* matches the declared type (and enum)."""
        if self.type == "string":
            ok = isinstance(value, str)
        elif self.type == "integer":
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif self.type == "boolean":
            ok = isinstance(value, bool)
        elif self.type == "array":
            ok = isinstance(value, (list, tuple))
        elif self.type == "datetime":
            ok = _is_datetime(value)
        else:
            ok = False
        if ok and self.enum_values:
            ok = value in self.enum_values
        return ok

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {
            "type": self.type,
            "required": self.required,
            "description": self.description,
        }
        if self.enum_values:
            payload["enum_values"] = list(self.enum_values)
        return payload


@dataclass(frozen=True)
class NodeTypeSpec:
    """A node label with its typed properties."""
    name: str
    description: str = ""
    properties: tuple[PropertySpec, ...] = ()
    unique_identifiers: tuple[str, ...] = ()

    @property
    def required_properties(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.properties if p.required)

    def get_property(self, name: str) -> Optional[PropertySpec]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {
            "name": self.name,
            "label": self.name,
            "description": self.description,
            "properties": {p.name: p.to_payload() for p in self.properties},
            "required_properties": list(self.required_properties),
        }
        if self.unique_identifiers:
            payload["unique_identifiers"] = list(self.unique_identifiers)
        return payload


@dataclass(frozen=True)
class RelationshipTypeSpec:
    """A relationship type with its permitted endpoint labels."""
    name: str
    label: str = ""
    description: str = ""
    allowed_source_types: frozenset[str] = field(default_factory=frozenset)
    allowed_target_types: frozenset[str] = field(default_factory=frozenset)

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "label": self.label or self.name,
            "description": self.description,
            "allowed_source_types": sorted(self.allowed_source_types),
            "allowed_target_types": sorted(self.allowed_target_types),
        }


def _is_datetime(value: Any) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SchemaRegistry:
    """
    Static catalog of allowed node/relationship types.

    Parameters
    ----------
    name:
        Schema name used for registration with the knowledge store.
    description:
        Human-readable description.
    node_types / relationship_types:
        The full vocabulary; fixed for the lifetime of the registry.
    """

    def __init__(
        self,
        name: str,
        description: str,
        node_types: Iterable[NodeTypeSpec],
        relationship_types: Iterable[RelationshipTypeSpec],
    ) -> None:
        self._name = name
        self._description = description
        self._node_types: Mapping[str, NodeTypeSpec] = MappingProxyType(
            {spec.name: spec for spec in node_types}
        )
        self._relationship_types: Mapping[str, RelationshipTypeSpec] = MappingProxyType(
            {spec.name: spec for spec in relationship_types}
        )
        for spec in self._node_types.values():
            for prop in spec.properties:
                if prop.type not in PROPERTY_TYPES:
                    raise ValueError(f"{spec.name}.{prop.name}: unknown property type {prop.type!r}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def node_types(self) -> Mapping[str, NodeTypeSpec]:
        return self._node_types

    @property
    def relationship_types(self) -> Mapping[str, RelationshipTypeSpec]:
        return self._relationship_types

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_node(self, node: Node) -> list[SchemaViolation]:
        """
        Check *node* against its label's schema.

        Returns
        -------
        list[SchemaViolation]
            Empty when the node is valid.  Violations are reported, never
            raised; the caller decides whether to drop the node.
        """
        spec = self._node_types.get(node.label)
        if spec is None:
            return [SchemaViolation(f"unknown node label {node.label!r}", node.id, node.label)]

        violations: list[SchemaViolation] = []
        for prop_name in spec.required_properties:
            if node.properties.get(prop_name) is None:
                violations.append(SchemaViolation(
                    f"{node.label} missing required property {prop_name!r}", node.id, node.label
                ))
        for key, value in node.properties.items():
            if value is None:
                continue
            prop = spec.get_property(key)
            if prop is None:
                violations.append(SchemaViolation(
                    f"{node.label} has undeclared property {key!r}", node.id, node.label
                ))
            elif not prop.accepts(value):
                violations.append(SchemaViolation(
                    f"{node.label}.{key} expects {prop.type}"
                    + (f" in {list(prop.enum_values)}" if prop.enum_values else "")
                    + f", got {value!r}",
                    node.id, node.label,
                ))
        return violations

    def validate_relationship(
        self,
        rel: Relationship,
        label_lookup: Callable[[str], Optional[str]],
    ) -> list[SchemaViolation]:
        """
        Check *rel*'s type and endpoint labels.

        *label_lookup* maps a node ID to its label, or None when the node is
        not known.  Unknown endpoints (dangling edges) are not an error; a
        speculative target is checked against the label it is expected to
        resolve to.
        """
        spec = self._relationship_types.get(rel.relationship_type)
        rel_id = f"{rel.source_node_id}-{rel.relationship_type}->{rel.target_node_id}"
        if spec is None:
            return [SchemaViolation(
                f"unknown relationship type {rel.relationship_type!r}", rel_id, rel.relationship_type
            )]

        violations: list[SchemaViolation] = []
        source_label = label_lookup(rel.source_node_id)
        if rel.unresolved is not None:
            target_label: Optional[str] = rel.unresolved.label
        else:
            target_label = label_lookup(rel.target_node_id)

        if source_label is not None and source_label not in spec.allowed_source_types:
            violations.append(SchemaViolation(
                f"{rel.relationship_type} cannot start at {source_label}", rel_id, rel.relationship_type
            ))
        if target_label is not None and target_label not in spec.allowed_target_types:
            violations.append(SchemaViolation(
                f"{rel.relationship_type} cannot end at {target_label}", rel_id, rel.relationship_type
            ))
        return violations

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_payload(self) -> dict:
        """Render the catalog in the knowledge store's registration format."""
        return {
            "name": self._name,
            "description": self._description,
            "status": "active",
            "node_types": {name: spec.to_payload() for name, spec in self._node_types.items()},
            "relationship_types": {
                name: spec.to_payload() for name, spec in self._relationship_types.items()
            },
        }
