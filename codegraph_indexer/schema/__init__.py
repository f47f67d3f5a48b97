"""
Schema layer — the closed CodeGraph_v1 vocabulary, validation, and
one-time registration with the knowledge store.
"""

from .catalog import SCHEMA_NAME, build_code_schema
from .manager import SchemaManager
from .registry import NodeTypeSpec, PropertySpec, RelationshipTypeSpec, SchemaRegistry

__all__ = [
    "SCHEMA_NAME",
    "build_code_schema",
    "NodeTypeSpec",
    "PropertySpec",
    "RelationshipTypeSpec",
    "SchemaManager",
    "SchemaRegistry",
]
