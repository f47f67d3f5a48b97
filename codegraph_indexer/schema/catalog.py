"""
The CodeGraph_v1 catalog: 10 node types and 20 relationship types.

This module only declares data; :func:`build_code_schema` wraps it in a
read-only :class:`~codegraph_indexer.schema.registry.SchemaRegistry`.
"""

from __future__ import annotations

from .registry import NodeTypeSpec, PropertySpec, RelationshipTypeSpec, SchemaRegistry

SCHEMA_NAME = "CodeGraph_v1"
SCHEMA_DESCRIPTION = (
    "Semantic code graph with functions, classes, imports, and relationships "
    "for advanced code introspection"
)


def _p(name: str, type_: str = "string", required: bool = False,
       description: str = "", enum: tuple[str, ...] = ()) -> PropertySpec:
    return PropertySpec(name=name, type=type_, required=required,
                        description=description, enum_values=enum)


NODE_TYPES: tuple[NodeTypeSpec, ...] = (
    NodeTypeSpec(
        name="File",
        description="Source code file (Python, JS, Java, etc.)",
        properties=(
            _p("path", required=True, description="Absolute or relative file path"),
            _p("language", required=True, description="Programming language"),
            _p("size", "integer", description="File size in bytes"),
            _p("hash", description="Content hash for change detection"),
            _p("lastModified", "datetime", description="Last modification timestamp"),
        ),
        unique_identifiers=("path",),
    ),
    NodeTypeSpec(
        name="Function",
        description="Function or method definition (language-agnostic)",
        properties=(
            _p("name", required=True, description="Function name"),
            _p("signature", description="Full function signature with parameters"),
            _p("language", required=True, description="Programming language"),
            _p("startLine", "integer", required=True, description="Starting line number in file"),
            _p("endLine", "integer", required=True, description="Ending line number in file"),
            _p("complexity", "integer", description="Cyclomatic complexity score"),
            _p("async", "boolean", description="Is async/await function"),
        ),
        unique_identifiers=("name", "signature"),
    ),
    NodeTypeSpec(
        name="Class",
        description="Class, interface, or type definition (language-agnostic)",
        properties=(
            _p("name", required=True, description="Class name"),
            _p("language", required=True, description="Programming language"),
            _p("isAbstract", "boolean", description="Is abstract class or interface"),
            _p("startLine", "integer", required=True, description="Starting line number"),
            _p("endLine", "integer", required=True, description="Ending line number"),
        ),
        unique_identifiers=("name",),
    ),
    NodeTypeSpec(
        name="Variable",
        description="Variable declaration or parameter",
        properties=(
            _p("name", required=True, description="Variable name"),
            _p("type", description="Variable type annotation"),
            _p("scope", required=True, description="Variable scope",
               enum=("global", "local", "parameter", "field")),
            _p("language", required=True, description="Programming language"),
            _p("line", "integer", required=True, description="Declaration line number"),
        ),
        unique_identifiers=("name", "scope"),
    ),
    NodeTypeSpec(
        name="Import",
        description="Import/require/include statement",
        properties=(
            _p("moduleName", required=True, description="Imported module name"),
            _p("importedNames", "array", description="Specific imported symbols"),
            _p("isWildcard", "boolean", description="Is wildcard import (e.g., import *)"),
            _p("alias", description="Import alias (e.g., as np)"),
            _p("line", "integer", required=True, description="Import statement line number"),
        ),
        unique_identifiers=("moduleName",),
    ),
    NodeTypeSpec(
        name="Export",
        description="Exported symbol from a module",
        properties=(
            _p("name", required=True, description="Export name"),
            _p("type", required=True, description="Export type",
               enum=("function", "class", "variable", "default")),
            _p("isDefault", "boolean", description="Is default export"),
        ),
        unique_identifiers=("name",),
    ),
    NodeTypeSpec(
        name="CallSite",
        description="Function call location (for precise call graph tracking)",
        properties=(
            _p("calleeName", required=True, description="Called function name"),
            _p("line", "integer", required=True, description="Call line number"),
            _p("argumentCount", "integer", description="Number of arguments passed"),
            _p("isChained", "boolean", description="Is part of method chain"),
        ),
    ),
    NodeTypeSpec(
        name="Decorator",
        description="Decorator/annotation (Python, TypeScript, Java)",
        properties=(
            _p("name", required=True, description="Decorator name"),
            _p("arguments", "array", description="Decorator arguments"),
            _p("line", "integer", required=True, description="Decorator line number"),
        ),
        unique_identifiers=("name",),
    ),
    NodeTypeSpec(
        name="Comment",
        description="Comment or documentation string",
        properties=(
            _p("text", required=True, description="Comment text content"),
            _p("type", required=True, description="Comment type",
               enum=("line", "block", "docstring")),
            _p("startLine", "integer", required=True, description="Starting line number"),
            _p("endLine", "integer", description="Ending line number (for block comments)"),
        ),
    ),
    NodeTypeSpec(
        name="Package",
        description="External package dependency",
        properties=(
            _p("name", required=True, description="Package name"),
            _p("version", description="Package version"),
            _p("type", required=True, description="Package manager type",
               enum=("npm", "pip", "maven", "gem", "cargo")),
        ),
        unique_identifiers=("name", "version"),
    ),
)


def _r(name: str, label: str, description: str,
       sources: tuple[str, ...], targets: tuple[str, ...]) -> RelationshipTypeSpec:
    return RelationshipTypeSpec(
        name=name,
        label=label,
        description=description,
        allowed_source_types=frozenset(sources),
        allowed_target_types=frozenset(targets),
    )


RELATIONSHIP_TYPES: tuple[RelationshipTypeSpec, ...] = (
    _r("DEFINED_IN", "Defined In", "Symbol is defined in this file",
       ("Function", "Class", "Variable", "Import", "Export", "CallSite", "Decorator", "Comment"),
       ("File",)),
    _r("CALLS", "Calls", "Function calls another function",
       ("Function", "CallSite"), ("Function",)),
    _r("CALLED_BY", "Called By", "Reverse of CALLS (for bidirectional queries)",
       ("Function",), ("Function", "CallSite")),
    _r("EXTENDS", "Extends", "Class inheritance relationship", ("Class",), ("Class",)),
    _r("IMPLEMENTS", "Implements", "Interface implementation", ("Class",), ("Class",)),
    _r("HAS_METHOD", "Has Method", "Class contains method", ("Class",), ("Function",)),
    _r("HAS_FIELD", "Has Field", "Class has field or property", ("Class",), ("Variable",)),
    _r("IMPORTS", "Imports", "File contains import statement", ("File",), ("Import",)),
    _r("IMPORTS_FROM", "Imports From", "Import resolves to file or package",
       ("Import",), ("File", "Package")),
    _r("EXPORTS", "Exports", "File exports symbol", ("File",), ("Export",)),
    _r("EXPORTS_SYMBOL", "Exports Symbol", "Export references a symbol",
       ("Export",), ("Function", "Class", "Variable")),
    _r("HAS_PARAMETER", "Has Parameter", "Function has parameter", ("Function",), ("Variable",)),
    _r("USES_VARIABLE", "Uses Variable", "Function reads or writes variable",
       ("Function",), ("Variable",)),
    _r("ASSIGNS_TO", "Assigns To", "Function assigns value to variable",
       ("Function",), ("Variable",)),
    _r("DECORATED_WITH", "Decorated With", "Symbol has decorator or annotation",
       ("Function", "Class"), ("Decorator",)),
    _r("DOCUMENTS", "Documents", "Comment documents a symbol",
       ("Comment",), ("Function", "Class", "File")),
    _r("DEPENDS_ON", "Depends On", "File depends on external package", ("File",), ("Package",)),
    _r("TESTED_BY", "Tested By", "Symbol is tested by test function",
       ("Function", "Class"), ("Function",)),
    _r("THROWS", "Throws", "Function can throw exception type", ("Function",), ("Class",)),
    _r("REFERENCES", "References", "Generic reference relationship",
       ("Function", "Class", "Variable"), ("Function", "Class", "Variable")),
)


def build_code_schema() -> SchemaRegistry:
    """Return the read-only CodeGraph_v1 registry."""
    return SchemaRegistry(
        name=SCHEMA_NAME,
        description=SCHEMA_DESCRIPTION,
        node_types=NODE_TYPES,
        relationship_types=RELATIONSHIP_TYPES,
    )
