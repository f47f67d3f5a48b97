"""
Cross-file reference resolution.

Extractors only know a callee, base class, raised exception or imported
module by name.  Once a whole batch has been extracted, :class:`SymbolTable`
indexes every definition (plus those recorded by earlier runs) and
:class:`ReferenceResolver` rewrites each speculative relationship to point at
the best-matching definition.
"""

from __future__ import annotations

import logging
import posixpath
import sys
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional

from ..identity import node_id
from .models import ExtractionResult, Node, Relationship

logger = logging.getLogger(__name__)

# Labels a speculative relationship can resolve to by name
_SYMBOL_LABELS = frozenset({"Function", "Class", "Variable"})

_PACKAGE_ROOTS = ("src", "lib")


def module_names_for(path: str) -> list[str]:
    """
    Dotted module names under which *path* can be imported.

    ``pkg/mod.py`` gives ``pkg.mod``; ``pkg/__init__.py`` gives ``pkg``; a
    leading ``src/`` or ``lib/`` directory is also accepted as a source root.
    """
    stem = posixpath.splitext(path.replace("\\", "/"))[0]
    parts = [p for p in stem.split("/") if p and p != "."]
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    if not parts:
        return []
    names = [".".join(parts)]
    if parts[0] in _PACKAGE_ROOTS and len(parts) > 1:
        names.append(".".join(parts[1:]))
    return names


def absolute_module(name: str, importer_path: str) -> Optional[str]:
    """
    Turn a possibly relative module reference into a dotted absolute name.

    ``from ..a import b`` inside ``pkg/sub/m.py`` refers to ``pkg.a``.  Returns
    None when the relative import climbs above the project root.
    """
    if not name.startswith("."):
        return name
    dots = len(name) - len(name.lstrip("."))
    rest = name[dots:]
    directory = posixpath.dirname(importer_path.replace("\\", "/"))
    package = [p for p in directory.split("/") if p and p != "."]
    up = dots - 1
    if up > len(package):
        return None
    base = package[:len(package) - up]
    parts = base + ([rest] if rest else [])
    return ".".join(parts) or None


@dataclass(frozen=True)
class SymbolEntry:
    """One resolvable definition."""
    node_id: str
    label: str
    name: str
    file_path: str
    line: int = 0


class SymbolTable:
    """
    Index of (label, name) → definitions, plus dotted module → file path.

    Built once per batch; read-only while resolving.
    """

    def __init__(self) -> None:
        self._by_key: dict[tuple[str, str], list[SymbolEntry]] = {}
        self._modules: dict[str, str] = {}
        self._top_packages: set[str] = set()

    @classmethod
    def build(
        cls,
        results: Iterable[ExtractionResult],
        previous: Iterable[Mapping] = (),
    ) -> "SymbolTable":
        """
        Index *results* and the *previous* symbol rows recorded by the
        manifest.  Rows for files present in *results* are ignored as stale.
        """
        table = cls()
        results = list(results)
        fresh = {r.file_path for r in results}
        for result in results:
            table.add_result(result)
        for row in previous:
            if row["path"] in fresh:
                continue
            table.add_file(row["path"])
            table.add(SymbolEntry(
                node_id=row["node_id"],
                label=row["label"],
                name=row["name"],
                file_path=row["path"],
                line=row.get("line") or 0,
            ))
        return table

    def add(self, entry: SymbolEntry) -> None:
        self._by_key.setdefault((entry.label, entry.name), []).append(entry)

    def add_file(self, path: str) -> None:
        for module in module_names_for(path):
            self._modules.setdefault(module, path)
            self._top_packages.add(module.split(".")[0])

    def add_result(self, result: ExtractionResult) -> None:
        self.add_file(result.file_path)
        for entry in symbol_entries(result):
            self.add(entry)

    def candidates(self, label: str, name: str) -> list[SymbolEntry]:
        return list(self._by_key.get((label, name), ()))

    def module_file(self, module: str) -> Optional[str]:
        return self._modules.get(module)

    def is_project_package(self, top_level: str) -> bool:
        return top_level in self._top_packages

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_key.values())


def symbol_entries(result: ExtractionResult) -> list[SymbolEntry]:
    """Resolvable definitions of one extraction result."""
    entries: list[SymbolEntry] = []
    for node in result.nodes:
        if node.label not in _SYMBOL_LABELS:
            continue
        if node.label == "Variable" and node.properties.get("scope") != "global":
            continue
        props = node.properties
        entries.append(SymbolEntry(
            node_id=node.id,
            label=node.label,
            name=str(props.get("name", "")),
            file_path=result.file_path,
            line=int(props.get("startLine") or props.get("line") or 0),
        ))
    return entries


class ReferenceResolver:
    """
    Rewrites speculative relationships against a :class:`SymbolTable`.

    Parameters
    ----------
    symbols:
        Batch-wide symbol table.
    stdlib_modules:
        Top-level module names treated as the standard library; imports of
        these never become Package nodes.
    """

    def __init__(
        self,
        symbols: SymbolTable,
        stdlib_modules: Iterable[str] = sys.stdlib_module_names,
    ) -> None:
        self.symbols = symbols
        self.stdlib_modules = frozenset(stdlib_modules) | {"__future__"}

    def resolve(self, result: ExtractionResult) -> ExtractionResult:
        """
        Return a new result with every resolvable reference rematched.

        Unmatched references are kept unchanged (``resolved: False``).
        Package nodes created for third-party imports are appended to the
        result's nodes.
        """
        by_id = {n.id: n for n in result.nodes}
        file_node = result.file_node
        packages: dict[str, Node] = {}
        depends: set[str] = set()
        relationships: list[Relationship] = []
        resolved_count = 0

        for rel in result.relationships:
            ref = rel.unresolved
            if ref is None:
                relationships.append(rel)
                continue

            if ref.label == "File":
                new_rels = self._resolve_import(rel, file_node, packages, depends)
                resolved_count += int(new_rels[0].unresolved is None)
                relationships.extend(new_rels)
                continue

            target = self.best_candidate(ref.label, ref.name, ref.disambiguator)
            if target is None:
                relationships.append(rel)
                continue

            resolved_count += 1
            resolved = replace(
                rel,
                target_node_id=target.node_id,
                properties={**rel.properties, "resolved": True},
                unresolved=None,
            )
            relationships.append(resolved)

            source = by_id.get(rel.source_node_id)
            if rel.relationship_type == "CALLS" and source is not None and source.label == "Function":
                back_props = {"line": rel.properties["line"]} if "line" in rel.properties else {}
                relationships.append(Relationship(
                    target.node_id, source.id, "CALLED_BY", back_props
                ))
                if source.name.startswith("test_"):
                    relationships.append(Relationship(target.node_id, source.id, "TESTED_BY"))

        logger.debug(
            "Resolved %d references in %s (%d packages)",
            resolved_count, result.file_path, len(packages),
        )
        return ExtractionResult(
            file_path=result.file_path,
            language=result.language,
            nodes=list(result.nodes) + list(packages.values()),
            relationships=relationships,
            stats=dict(result.stats, resolved=resolved_count),
        )

    def best_candidate(self, label: str, name: str, origin_path: str) -> Optional[SymbolEntry]:
        """
        Pick the definition of (*label*, *name*) closest to *origin_path*.

        Ranking: same file, then same directory, then lexical path order;
        ties broken by line.  Dotted names match on their last segment.
        """
        short = name.rsplit(".", 1)[-1]
        candidates = self.symbols.candidates(label, short)
        if not candidates:
            return None
        origin_dir = posixpath.dirname(origin_path)

        def rank(entry: SymbolEntry) -> tuple:
            if entry.file_path == origin_path:
                locality = 0
            elif posixpath.dirname(entry.file_path) == origin_dir:
                locality = 1
            else:
                locality = 2
            return (locality, entry.file_path, entry.line)

        return min(candidates, key=rank)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def _resolve_import(
        self,
        rel: Relationship,
        file_node: Optional[Node],
        packages: dict[str, Node],
        depends: set[str],
    ) -> list[Relationship]:
        ref = rel.unresolved
        module = absolute_module(ref.name, ref.disambiguator)
        target_path = self.symbols.module_file(module) if module else None
        if target_path is not None:
            return [replace(
                rel,
                target_node_id=node_id("File", {"path": target_path}),
                properties={**rel.properties, "resolved": True},
                unresolved=None,
            )]

        if module is None or ref.name.startswith("."):
            return [rel]
        top = module.split(".")[0]
        if top in self.stdlib_modules or self.symbols.is_project_package(top):
            return [rel]

        props = {"name": top, "type": "pip"}
        pkg_id = node_id("Package", props)
        packages.setdefault(pkg_id, Node(id=pkg_id, label="Package", properties=props))
        out = [replace(
            rel,
            target_node_id=pkg_id,
            properties={**rel.properties, "resolved": True},
            unresolved=None,
        )]
        if file_node is not None and pkg_id not in depends:
            depends.add(pkg_id)
            out.append(Relationship(file_node.id, pkg_id, "DEPENDS_ON"))
        return out
