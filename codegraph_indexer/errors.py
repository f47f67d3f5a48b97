"""
Error taxonomy for the code graph indexer.

Only :class:`ConfigurationError` is fatal to a run; the other errors are
scoped to a single item or file and are recorded by the orchestrator.
"""

from __future__ import annotations

from typing import Optional


class IndexerError(Exception):
    """Base class for all indexer errors."""


class SchemaViolation(IndexerError):
    """A node or relationship falls outside the closed schema vocabulary."""

    def __init__(self, message: str, item_id: Optional[str] = None,
                 kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id
        self.kind = kind

    def __repr__(self) -> str:
        return f"SchemaViolation({self.kind!r}, {self.item_id!r}, {self.message!r})"


class ExtractionError(IndexerError):
    """A file could not be parsed into graph candidates."""

    def __init__(self, file_path: str, message: str) -> None:
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path
        self.message = message


class PublishError(IndexerError):
    """The knowledge store rejected a bundle or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(IndexerError):
    """Missing credentials or an unreachable schema registry."""
