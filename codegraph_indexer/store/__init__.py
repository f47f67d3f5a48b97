"""
Knowledge-store access.
"""

from .client import KnowledgeStoreClient

__all__ = ["KnowledgeStoreClient"]
