"""
Graph layer — data model, per-file accumulation and cross-file resolution.
"""

from .accumulator import GraphAccumulator
from .models import ExtractionResult, GraphSnapshot, Node, Relationship, UnresolvedReference
from .resolver import ReferenceResolver, SymbolTable

__all__ = [
    "ExtractionResult",
    "GraphAccumulator",
    "GraphSnapshot",
    "Node",
    "ReferenceResolver",
    "Relationship",
    "SymbolTable",
    "UnresolvedReference",
]
