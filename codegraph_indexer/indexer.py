"""
Indexer — orchestrates indexing a project into the knowledge store.

Directory index:
  1. Walk the project directory (respecting skip dirs and .gitignore)
  2. Read and extract every changed file (tree-sitter)
  3. Build one symbol table for the batch and resolve references
  4. Per file: accumulate → synthesize → publish → record in the manifest

A file whose content hash matches the manifest is skipped unless ``force``.
A failure in one file never stops the run; only configuration errors do.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Union

from .errors import ExtractionError, PublishError
from .extractors.registry import ExtractorRegistry, default_registry
from .graph.accumulator import GraphAccumulator
from .graph.models import ExtractionResult
from .graph.resolver import ReferenceResolver, SymbolTable, symbol_entries
from .identity import file_hash
from .manifest import Manifest, SymbolRecord
from .schema.catalog import build_code_schema
from .schema.manager import SchemaManager
from .schema.registry import SchemaRegistry
from .store.client import KnowledgeStoreClient
from .synthesizer import ContentSynthesizer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor", ".codegraph",
    ".venv", "venv", "env", ".env",
    ".tox", ".mypy_cache", ".pytest_cache",
    "target",
    ".next", ".nuxt",
    ".vscode", ".idea",
    "eggs", ".eggs",
    ".cache",
})

_TEST_PATTERNS = tuple(re.compile(p) for p in (
    r"(^|/)tests?/",
    r"(^|/)__tests__/",
    r"\.test\.",
    r"\.spec\.",
    r"_test\.",
    r"(^|/)test_[^/]*\.py$",
    r"(^|/)conftest\.py$",
))

_GENERATED_PATTERNS = tuple(re.compile(p) for p in (
    r"\.generated\.",
    r"\.gen\.",
    r"-generated\.",
    r"(^|/)generated/",
    r"(^|/)gen/",
    r"_pb2(_grpc)?\.py$",
))


def _load_gitignore_patterns(project_root: str) -> list[str]:
    """Read .gitignore from *project_root* and return glob patterns."""
    gi_path = os.path.join(project_root, ".gitignore")
    patterns: list[str] = []
    if not os.path.exists(gi_path):
        return patterns
    with open(gi_path, encoding="utf-8", errors="replace") as fh:
        for line in fh:
            line = line.strip()
            if line and not line.startswith(("#", "!")):
                patterns.append(line.rstrip("/"))
    return patterns


def _is_ignored(path: str, gitignore_patterns: list[str]) -> bool:
    """Return True if *path* matches any gitignore pattern."""
    name = os.path.basename(path)
    for pattern in gitignore_patterns:
        if fnmatch.fnmatch(name, pattern):
            return True
        if fnmatch.fnmatch(path, pattern.lstrip("/")):
            return True
    return False


def is_test_file(rel_path: str) -> bool:
    return any(p.search(rel_path) for p in _TEST_PATTERNS)


def is_generated_file(rel_path: str) -> bool:
    return any(p.search(rel_path) for p in _GENERATED_PATTERNS)


def walk_source_files(
    project_root: str,
    extractors: ExtractorRegistry,
    include_tests: bool = False,
    include_generated: bool = False,
    extra_skip_dirs: Iterable[str] = (),
) -> list[str]:
    """
    Walk *project_root* and return the indexable source files.

    Skips excluded directories, gitignore matches, files no extractor
    handles, and (unless included) test and generated files.  Paths are
    returned relative to *project_root* with ``/`` separators, sorted.
    """
    skip = _SKIP_DIRS | frozenset(extra_skip_dirs)
    gi_patterns = _load_gitignore_patterns(project_root)
    results: list[str] = []

    for dirpath, dirnames, filenames in os.walk(project_root, topdown=True):
        # Prune excluded directories in-place (modifies the walk)
        dirnames[:] = [
            d for d in dirnames
            if d not in skip
            and not d.startswith(".")
            and not _is_ignored(
                os.path.relpath(os.path.join(dirpath, d), project_root).replace(os.sep, "/"),
                gi_patterns,
            )
        ]

        for fname in filenames:
            abs_path = os.path.join(dirpath, fname)
            rel_path = os.path.relpath(abs_path, project_root).replace(os.sep, "/")
            if extractors.for_path(rel_path) is None:
                continue
            if _is_ignored(rel_path, gi_patterns):
                continue
            if not include_tests and is_test_file(rel_path):
                continue
            if not include_generated and is_generated_file(rel_path):
                continue
            results.append(rel_path)

    return sorted(results)


def _mtime_iso(abs_path: str) -> Optional[str]:
    try:
        mtime = os.path.getmtime(abs_path)
    except OSError:
        return None
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class FileOutcome:
    """What happened to one file."""
    path: str
    status: str                      # "success" | "skipped" | "failed"
    memory_id: Optional[str] = None
    node_count: int = 0
    relationship_count: int = 0
    error: Optional[str] = None


@dataclass
class IndexSummary:
    """Counters and per-file outcomes of one indexing run."""
    success: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    outcomes: list[FileOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    max_errors: int = 50

    @property
    def total(self) -> int:
        return self.success + self.skipped + self.failed

    def record(self, outcome: FileOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "success":
            self.success += 1
        elif outcome.status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            if outcome.error and len(self.errors) < self.max_errors:
                self.errors.append(outcome.error)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
            "errors": list(self.errors),
            "elapsed_seconds": self.elapsed_seconds,
            "cancelled": self.cancelled,
        }


@dataclass
class _Extracted:
    """A file that parsed and validated, waiting for resolution/publish."""
    path: str
    text: str
    hash: str
    last_modified: Optional[str]
    result: ExtractionResult
    previous_memory_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Public indexing API
# ---------------------------------------------------------------------------

class Indexer:
    """
    Orchestrates indexing of a project.

    Parameters
    ----------
    project_root:
        Directory that relative paths are resolved against.
    store:
        Knowledge-store client used to publish documents.
    schema_manager:
        Ensures the schema is registered before the first file.
    schema:
        Registry used to validate extracted candidates.
    extractors:
        Language extractors, selected by file extension.
    manifest:
        Change-detection manifest; None disables skipping and cleanup.
    progress_callback:
        Optional callable called with (current, total, filename) for each
        processed file.
    """

    def __init__(
        self,
        project_root: str,
        store: KnowledgeStoreClient,
        schema_manager: SchemaManager,
        schema: SchemaRegistry,
        extractors: ExtractorRegistry,
        manifest: Optional[Manifest] = None,
        synthesizer: Optional[ContentSynthesizer] = None,
        include_tests: bool = False,
        include_generated: bool = False,
        include_source: bool = True,
        publish_delay: float = 0.1,
        max_errors: int = 50,
        extra_ignore_dirs: Iterable[str] = (),
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.project_root = os.path.abspath(project_root)
        self.store = store
        self.schema_manager = schema_manager
        self.schema = schema
        self.extractors = extractors
        self.manifest = manifest
        self.synthesizer = synthesizer or ContentSynthesizer()
        self.include_tests = include_tests
        self.include_generated = include_generated
        self.include_source = include_source
        self.publish_delay = publish_delay
        self.max_errors = max_errors
        self.extra_ignore_dirs = tuple(extra_ignore_dirs)
        self.progress_callback = progress_callback
        self._sleep = sleep
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """
        Stop after the file currently being processed.

        A cancel issued between runs stops the next run before its first
        file.  Files left unpublished are reported as skipped.
        """
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def index_directory(self, root: Optional[str] = None, force: bool = False) -> IndexSummary:
        """
        Index every eligible file under *root* (default: the project root).

        Files recorded in the manifest that no longer exist on disk are
        retired from the store and the manifest first.
        """
        root = os.path.abspath(root) if root else self.project_root
        paths = [
            self._relative(os.path.join(root, p))
            for p in walk_source_files(
                root,
                self.extractors,
                include_tests=self.include_tests,
                include_generated=self.include_generated,
                extra_skip_dirs=self.extra_ignore_dirs,
            )
        ]
        logger.info("Found %d source files under %s", len(paths), root)
        self.schema_manager.ensure_schema()
        self._prune_deleted()
        return self.index_files(paths, force=force)

    def index_file(self, path: str, force: bool = False) -> FileOutcome:
        """Index a single file and return its outcome."""
        summary = self.index_files([path], force=force)
        if summary.outcomes:
            return summary.outcomes[0]
        return FileOutcome(self._relative(path), "skipped", error="cancelled")

    def index_files(self, paths: Iterable[str], force: bool = False) -> IndexSummary:
        """
        Index *paths* as one batch.

        All files are extracted before any is published so references can be
        resolved across the whole batch.

        Raises
        ------
        ConfigurationError
            If the schema cannot be registered; raised before any file is
            processed.
        """
        self.schema_manager.ensure_schema()
        start_time = time.time()
        summary = IndexSummary(max_errors=self.max_errors)
        rel_paths = [self._relative(p) for p in paths]
        total = len(rel_paths)

        extracted: list[_Extracted] = []
        unvisited: list[str] = []
        published = 0
        try:
            for idx, rel_path in enumerate(rel_paths):
                if self._cancel.is_set():
                    summary.cancelled = True
                    unvisited = rel_paths[idx:]
                    break
                if self.progress_callback:
                    self.progress_callback(idx + 1, total, rel_path)
                prepared = self._prepare(rel_path, force)
                if isinstance(prepared, FileOutcome):
                    summary.record(prepared)
                else:
                    extracted.append(prepared)

            if not summary.cancelled and extracted:
                previous = self.manifest.iter_symbols() if self.manifest is not None else ()
                symbols = SymbolTable.build((item.result for item in extracted), previous)
                resolver = ReferenceResolver(symbols)
                for item in extracted:
                    if self._cancel.is_set():
                        summary.cancelled = True
                        break
                    if published > 0 and self.publish_delay > 0:
                        self._sleep(self.publish_delay)
                    summary.record(self._publish(item, resolver))
                    published += 1
        finally:
            self._cancel.clear()

        for rel_path in [item.path for item in extracted[published:]] + unvisited:
            summary.record(FileOutcome(rel_path, "skipped", error="cancelled"))

        summary.elapsed_seconds = round(time.time() - start_time, 2)
        logger.info(
            "Indexing %s: %d succeeded, %d skipped, %d failed in %.1fs",
            "cancelled" if summary.cancelled else "complete",
            summary.success, summary.skipped, summary.failed, summary.elapsed_seconds,
        )
        return summary

    # ------------------------------------------------------------------
    # Per-file stages
    # ------------------------------------------------------------------

    def _prepare(self, rel_path: str, force: bool) -> Union[FileOutcome, _Extracted]:
        extractor = self.extractors.for_path(rel_path)
        if extractor is None:
            logger.debug("No extractor for %s, skipping", rel_path)
            return FileOutcome(rel_path, "skipped")

        abs_path = os.path.join(self.project_root, rel_path)
        try:
            with open(abs_path, encoding="utf-8") as fh:
                text = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            return self._failed(rel_path, f"{rel_path}: cannot read file: {exc}")

        digest = file_hash(text)
        record = self.manifest.get_file(rel_path) if self.manifest is not None else None
        if record is not None and record.hash == digest and not force:
            logger.debug("File unchanged, skipping: %s", rel_path)
            return FileOutcome(rel_path, "skipped", memory_id=record.memory_id)

        last_modified = _mtime_iso(abs_path)
        try:
            result = extractor.extract(text, rel_path, last_modified)
        except ExtractionError as exc:
            return self._failed(rel_path, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error extracting %s", rel_path)
            return self._failed(rel_path, f"{rel_path}: {exc}")

        result = self._validate(result)
        if result.file_node is None:
            return self._failed(rel_path, f"{rel_path}: file node failed schema validation")
        return _Extracted(
            path=rel_path,
            text=text,
            hash=digest,
            last_modified=last_modified,
            result=result,
            previous_memory_id=record.memory_id if record is not None else None,
        )

    def _validate(self, result: ExtractionResult) -> ExtractionResult:
        """Drop nodes and relationships that violate the schema."""
        labels: dict[str, str] = {}
        nodes = []
        for node in result.nodes:
            violations = self.schema.validate_node(node)
            if violations:
                for violation in violations:
                    logger.warning("Dropping node in %s: %s", result.file_path, violation.message)
                continue
            labels[node.id] = node.label
            nodes.append(node)

        relationships = []
        for rel in result.relationships:
            if rel.source_node_id not in labels:
                logger.debug("Dropping %s from dropped node %s", rel.relationship_type, rel.source_node_id)
                continue
            violations = self.schema.validate_relationship(rel, labels.get)
            if violations:
                for violation in violations:
                    logger.warning(
                        "Dropping relationship in %s: %s", result.file_path, violation.message
                    )
                continue
            relationships.append(rel)

        return ExtractionResult(
            file_path=result.file_path,
            language=result.language,
            nodes=nodes,
            relationships=relationships,
            stats=result.stats,
        )

    def _publish(self, item: _Extracted, resolver: ReferenceResolver) -> FileOutcome:
        resolved = resolver.resolve(item.result)
        graph = GraphAccumulator()
        graph.add_nodes(resolved.nodes)
        graph.add_relationships(resolved.relationships)
        snapshot = graph.snapshot()

        content = self.synthesizer.render_document(
            item.path, graph, item.text if self.include_source else None
        )
        metadata = self.synthesizer.render_metadata(item.path, graph)
        try:
            memory_id = self.store.add(content, metadata, snapshot)
        except PublishError as exc:
            return self._failed(item.path, f"{item.path}: publish failed: {exc}")

        if item.previous_memory_id and item.previous_memory_id != memory_id:
            try:
                self.store.delete_memory(item.previous_memory_id)
            except PublishError as exc:
                logger.warning(
                    "Could not retire previous document %s for %s: %s",
                    item.previous_memory_id, item.path, exc,
                )

        if self.manifest is not None:
            try:
                self.manifest.upsert_file(
                    path=item.path,
                    hash_=item.hash,
                    language=resolved.language,
                    last_modified=item.last_modified,
                    symbols=[
                        SymbolRecord(node_id=e.node_id, label=e.label, name=e.name, line=e.line)
                        for e in symbol_entries(resolved)
                    ],
                    memory_id=memory_id,
                )
            except sqlite3.Error as exc:
                # Published anyway; the next run re-publishes this file.
                logger.warning("Could not record %s in the manifest: %s", item.path, exc)

        logger.info(
            "Indexed %s (%d nodes, %d relationships)",
            item.path, len(snapshot.nodes), len(snapshot.relationships),
        )
        return FileOutcome(
            path=item.path,
            status="success",
            memory_id=memory_id,
            node_count=len(snapshot.nodes),
            relationship_count=len(snapshot.relationships),
        )

    def _prune_deleted(self) -> None:
        """Retire manifest entries whose files no longer exist."""
        if self.manifest is None:
            return
        for rel_path in self.manifest.get_all_indexed_paths():
            if os.path.exists(os.path.join(self.project_root, rel_path)):
                continue
            record = self.manifest.get_file(rel_path)
            if record is not None and record.memory_id:
                try:
                    self.store.delete_memory(record.memory_id)
                except PublishError as exc:
                    logger.warning("Could not delete document for removed %s: %s", rel_path, exc)
                    continue
            self.manifest.remove_file(rel_path)
            logger.info("Removed deleted file from index: %s", rel_path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _failed(self, rel_path: str, message: str) -> FileOutcome:
        logger.warning("Failed to index %s", message)
        return FileOutcome(rel_path, "failed", error=message)

    def _relative(self, path: str) -> str:
        if os.path.isabs(path):
            path = os.path.relpath(path, self.project_root)
        return os.path.normpath(path).replace(os.sep, "/")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_indexer(
    config,
    project_root: str = ".",
    store: Optional[KnowledgeStoreClient] = None,
    extractors: Optional[ExtractorRegistry] = None,
    progress_callback: Optional[Callable[[int, int, str], None]] = None,
) -> Indexer:
    """
    Wire an :class:`Indexer` from a :class:`~codegraph_indexer.config.Config`.

    Raises
    ------
    ConfigurationError
        If no store is given and the config has no API key.
    """
    root = os.path.abspath(project_root)
    schema = build_code_schema()
    if store is None:
        store = KnowledgeStoreClient.from_config(config)
    schema_manager = SchemaManager(
        store,
        schema,
        cache_file=config.SCHEMA_CACHE_FILE,
        ttl_days=config.SCHEMA_CACHE_TTL_DAYS,
    )
    manifest = Manifest(os.path.join(root, config.MANIFEST_DIR, "index.db"))
    return Indexer(
        project_root=root,
        store=store,
        schema_manager=schema_manager,
        schema=schema,
        extractors=extractors or default_registry(),
        manifest=manifest,
        include_tests=config.INCLUDE_TESTS,
        include_generated=config.INCLUDE_GENERATED,
        include_source=config.INCLUDE_SOURCE,
        publish_delay=config.PUBLISH_DELAY,
        max_errors=config.MAX_ERRORS,
        extra_ignore_dirs=config.EXTRA_IGNORE_DIRS,
        progress_callback=progress_callback,
    )
