"""
Python extractor built on tree-sitter-python.

The concrete syntax tree is walked directly (children, field names, node
types) rather than through the query API, so the same code works across
grammar releases.  Every call, base class, raised exception and imported
module is emitted as a speculative relationship; cross-file matching is the
resolver's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import tree_sitter as ts  # type: ignore
import tree_sitter_python as tsp  # type: ignore

from ..errors import ExtractionError
from ..graph.models import ExtractionResult
from ..identity import file_hash
from .base import (
    FragmentBuilder,
    LanguageExtractor,
    end_line,
    first_error,
    load_ts_language,
    node_text,
    start_line,
)

logger = logging.getLogger(__name__)

# Each occurrence adds one decision point to cyclomatic complexity
_BRANCH_TYPES = frozenset({
    "if_statement",
    "elif_clause",
    "for_statement",
    "while_statement",
    "except_clause",
    "except_group_clause",
    "conditional_expression",
    "boolean_operator",
    "for_in_clause",
    "if_clause",
    "case_clause",
})

# Bodies of these are scored on their own
_NESTED_SCOPES = frozenset({"function_definition", "class_definition", "lambda"})

_ABSTRACT_BASES = frozenset({"ABC", "Protocol"})
_PATTERN_TYPES = frozenset({"pattern_list", "tuple_pattern", "list_pattern"})
_STRING_TYPES = ("string", "concatenated_string")


# ---------------------------------------------------------------------------
# Syntax helpers
# ---------------------------------------------------------------------------

def _squash(text: str) -> str:
    return " ".join(text.split())


def _string_value(node) -> str:
    """Literal contents of a string node, without prefix or quotes."""
    if node.type == "concatenated_string":
        return "".join(_string_value(c) for c in node.named_children if c.type == "string")
    if any(c.type == "string_start" for c in node.children):
        return "".join(node_text(c) for c in node.children if c.type == "string_content")
    raw = node_text(node).lstrip("rRbBuUfF")
    for q in ('"""', "'''", '"', "'"):
        if raw.startswith(q) and raw.endswith(q) and len(raw) >= 2 * len(q):
            return raw[len(q):-len(q)]
    return raw


def _docstring_node(block):
    """Return the string node of a leading docstring in *block*, or None."""
    if block is None:
        return None
    for child in block.named_children:
        if child.type == "comment":
            continue
        if (
            child.type == "expression_statement"
            and child.named_child_count == 1
            and child.named_children[0].type in _STRING_TYPES
        ):
            return child.named_children[0]
        return None
    return None


def _complexity(body) -> int:
    """1 + number of branch points in *body*, excluding nested scopes."""
    score = 1
    stack = [body] if body is not None else []
    while stack:
        current = stack.pop()
        if current.type in _BRANCH_TYPES:
            score += 1
        if current.type in _NESTED_SCOPES:
            continue
        stack.extend(current.children)
    return score


def _local_bindings(body) -> frozenset:
    """Names a function body assigns without declaring them ``global``."""
    assigned: set[str] = set()
    declared: set[str] = set()
    stack = [body] if body is not None else []
    while stack:
        current = stack.pop()
        if current.type in ("assignment", "augmented_assignment"):
            assigned.update(_target_names(current.child_by_field_name("left")))
        elif current.type == "global_statement":
            declared.update(node_text(c) for c in current.named_children if c.type == "identifier")
        if current.type in _NESTED_SCOPES:
            continue
        stack.extend(current.children)
    return frozenset(assigned - declared)


def _target_names(left) -> list[str]:
    """Plain identifiers bound by an assignment target."""
    if left is None:
        return []
    if left.type == "identifier":
        return [node_text(left)]
    if left.type in _PATTERN_TYPES:
        names: list[str] = []
        for child in left.named_children:
            names.extend(_target_names(child))
        return names
    return []


def _param_names(params_node) -> list[str]:
    if params_node is None:
        return []
    names: list[str] = []
    for child in params_node.named_children:
        if child.type == "identifier":
            names.append(node_text(child))
            continue
        named = child.child_by_field_name("name")
        if named is not None and named.type == "identifier":
            names.append(node_text(named))
            continue
        for sub in child.children:
            if sub.type == "identifier":
                names.append(node_text(sub))
                break
    return names


def _class_bases(superclasses) -> tuple[list[str], bool]:
    """Return (declared base names in order, abstract-by-declaration flag)."""
    bases: list[str] = []
    abstract = False
    if superclasses is None:
        return bases, abstract
    for child in superclasses.named_children:
        if child.type in ("identifier", "attribute"):
            bases.append(node_text(child))
        elif child.type == "subscript":
            # Generic[T] -> Generic
            bases.append(node_text(child.child_by_field_name("value")))
        elif child.type == "keyword_argument":
            key = node_text(child.child_by_field_name("name"))
            value = node_text(child.child_by_field_name("value"))
            if key == "metaclass" and value.split(".")[-1] == "ABCMeta":
                abstract = True
    if any(base.split(".")[-1] in _ABSTRACT_BASES for base in bases):
        abstract = True
    return bases, abstract


def _decorator_parts(decorator) -> tuple[str, Optional[list[str]]]:
    """Return (name, arguments) for a decorator node; arguments None if not called."""
    expr = next((c for c in decorator.named_children if c.type != "comment"), None)
    if expr is None:
        return "", None
    if expr.type == "call":
        args_node = expr.child_by_field_name("arguments")
        args = [
            _squash(node_text(a)) for a in args_node.named_children if a.type != "comment"
        ] if args_node is not None else []
        return node_text(expr.child_by_field_name("function")), args
    return node_text(expr), None


@dataclass
class _Scope:
    """Where the walker currently is: module, class body or function body."""
    function_id: Optional[str] = None
    class_id: Optional[str] = None
    params: frozenset = frozenset()
    local_names: frozenset = frozenset()
    declared_globals: set = field(default_factory=set)

    @property
    def at_module(self) -> bool:
        return self.function_id is None and self.class_id is None

    @property
    def in_class_body(self) -> bool:
        return self.class_id is not None and self.function_id is None


# ---------------------------------------------------------------------------
# Walker
# ---------------------------------------------------------------------------

class _PythonWalker:
    """Single-use visitor that feeds one module's tree into a FragmentBuilder."""

    def __init__(self, builder: FragmentBuilder, file_id: str) -> None:
        self.b = builder
        self.file_id = file_id
        self.language = builder.language
        self._globals: dict[str, str] = {}
        self._top_level: dict[str, tuple[str, str]] = {}
        self._exports: list[str] = []
        self._linked: set[tuple[str, str, str]] = set()

    def run(self, root) -> None:
        self._collect_globals(root)
        doc = _docstring_node(root)
        if doc is not None:
            self._emit_docstring(doc, self.file_id)
        self._walk_children(root, _Scope())
        self._emit_exports()

    # -- dispatch ------------------------------------------------------

    def _walk_children(self, node, scope: _Scope) -> None:
        for child in node.children:
            self._visit(child, scope)

    def _visit(self, node, scope: _Scope) -> None:
        kind = node.type
        if kind == "decorated_definition":
            decorators = [c for c in node.named_children if c.type == "decorator"]
            for decorator in decorators:
                self._walk_children(decorator, scope)
            definition = node.child_by_field_name("definition")
            if definition is not None:
                self._visit_definition(definition, scope, decorators)
            return
        if kind in ("function_definition", "class_definition"):
            self._visit_definition(node, scope, [])
            return
        if kind == "lambda":
            self._visit_lambda(node, scope)
            return
        if kind == "import_statement":
            self._visit_import(node)
            return
        if kind in ("import_from_statement", "future_import_statement"):
            self._visit_import_from(node)
            return
        if kind == "comment":
            self._visit_comment(node)
            return
        if kind in ("assignment", "augmented_assignment"):
            self._visit_assignment(node, scope)
            return
        if kind == "global_statement":
            if scope.function_id is not None:
                scope.declared_globals.update(
                    node_text(c) for c in node.named_children if c.type == "identifier"
                )
            return
        if kind == "attribute":
            obj = node.child_by_field_name("object")
            if obj is not None:
                self._visit(obj, scope)
            return
        if kind == "keyword_argument":
            value = node.child_by_field_name("value")
            if value is not None:
                self._visit(value, scope)
            return
        if kind == "identifier":
            self._note_read(node, scope)
            return
        if kind == "call":
            self._visit_call(node, scope)
        elif kind == "raise_statement":
            self._visit_raise(node, scope)
        self._walk_children(node, scope)

    # -- definitions ---------------------------------------------------

    def _visit_definition(self, definition, scope: _Scope, decorators: list) -> None:
        if definition.type == "function_definition":
            self._visit_function(definition, scope, decorators)
        elif definition.type == "class_definition":
            self._visit_class(definition, scope, decorators)

    def _visit_function(self, definition, scope: _Scope, decorators: list) -> None:
        name = node_text(definition.child_by_field_name("name"))
        params_node = definition.child_by_field_name("parameters")
        return_node = definition.child_by_field_name("return_type")
        body = definition.child_by_field_name("body")
        is_async = any(c.type == "async" for c in definition.children)

        signature = f"def {name}{_squash(node_text(params_node))}"
        if return_node is not None:
            signature += f" -> {_squash(node_text(return_node))}"
        if is_async:
            signature = "async " + signature

        func_id = self.b.add_node("Function", {
            "name": name,
            "signature": signature,
            "language": self.language,
            "startLine": start_line(definition),
            "endLine": end_line(definition),
            "complexity": _complexity(body),
            "async": is_async,
        })
        self.b.relate(func_id, self.file_id, "DEFINED_IN")
        if scope.in_class_body:
            self.b.relate(scope.class_id, func_id, "HAS_METHOD")
            if any(_decorator_parts(d)[0].split(".")[-1] == "abstractmethod" for d in decorators):
                self.b.get(scope.class_id).properties["isAbstract"] = True
        elif scope.at_module:
            self._top_level.setdefault(name, ("function", func_id))
        self._emit_decorators(decorators, func_id)

        self._visit_defaults(params_node, scope)
        inner = _Scope(
            function_id=func_id,
            class_id=scope.class_id,
            params=frozenset(_param_names(params_node)),
            local_names=_local_bindings(body),
        )
        doc = _docstring_node(body)
        if doc is not None:
            self._emit_docstring(doc, func_id)
        if body is not None:
            self._walk_children(body, inner)

    def _visit_class(self, definition, scope: _Scope, decorators: list) -> None:
        name = node_text(definition.child_by_field_name("name"))
        superclasses = definition.child_by_field_name("superclasses")
        body = definition.child_by_field_name("body")
        bases, abstract = _class_bases(superclasses)

        props = {
            "name": name,
            "language": self.language,
            "isAbstract": abstract,
            "startLine": start_line(definition),
            "endLine": end_line(definition),
        }
        class_id = self.b.node_id_for("Class", props)
        # Same name in one file maps to one node; the first definition wins.
        first = not self.b.has(class_id)
        if first:
            self.b.add_node("Class", props)
            self.b.relate(class_id, self.file_id, "DEFINED_IN")
            if scope.at_module:
                self._top_level.setdefault(name, ("class", class_id))
        else:
            logger.debug(
                "Class %s redefined at line %d of %s; keeping the first definition",
                name, props["startLine"], self.b.file_path,
            )
        self._emit_decorators(decorators, class_id)
        if first:
            for base in bases:
                self.b.relate_unresolved(class_id, "EXTENDS", "Class", base)
        if superclasses is not None:
            self._walk_children(superclasses, scope)

        doc = _docstring_node(body)
        if doc is not None:
            self._emit_docstring(doc, class_id)
        if body is not None:
            self._walk_children(body, _Scope(class_id=class_id))

    def _visit_lambda(self, node, scope: _Scope) -> None:
        line = start_line(node)
        params_node = node.child_by_field_name("parameters")
        body = node.child_by_field_name("body")
        params = _squash(node_text(params_node))
        func_id = self.b.add_node("Function", {
            "name": f"<lambda:{line}:{node.start_point[1]}>",
            "signature": f"lambda {params}:" if params else "lambda:",
            "language": self.language,
            "startLine": line,
            "endLine": end_line(node),
            "complexity": _complexity(body),
            "async": False,
        })
        self.b.relate(func_id, self.file_id, "DEFINED_IN")
        self._visit_defaults(params_node, scope)
        if body is not None:
            self._visit(body, _Scope(
                function_id=func_id,
                class_id=scope.class_id,
                params=frozenset(_param_names(params_node)),
            ))

    def _visit_defaults(self, params_node, scope: _Scope) -> None:
        """Default values run in the enclosing scope."""
        if params_node is None:
            return
        for child in params_node.named_children:
            if child.type in ("default_parameter", "typed_default_parameter"):
                value = child.child_by_field_name("value")
                if value is not None:
                    self._visit(value, scope)

    def _emit_decorators(self, decorators: list, target_id: str) -> None:
        for decorator in decorators:
            name, args = _decorator_parts(decorator)
            if not name:
                continue
            dec_id = self.b.add_node("Decorator", {
                "name": name,
                "arguments": args,
                "line": start_line(decorator),
            })
            self.b.relate(dec_id, self.file_id, "DEFINED_IN")
            self.b.relate(target_id, dec_id, "DECORATED_WITH")

    # -- variables -----------------------------------------------------

    def _collect_globals(self, root) -> None:
        """Pre-register module-level names so earlier functions can use them."""
        for stmt in root.named_children:
            if stmt.type != "expression_statement":
                continue
            for expr in stmt.named_children:
                if expr.type != "assignment":
                    continue
                for name in _target_names(expr.child_by_field_name("left")):
                    self._globals.setdefault(name, self.b.node_id_for("Variable", {
                        "name": name, "scope": "global", "line": start_line(expr),
                    }))

    def _visit_assignment(self, node, scope: _Scope) -> None:
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        names = _target_names(left)

        if scope.function_id is None:
            self._declare_variables(node, names, scope)
            if scope.at_module and names == ["__all__"] and right is not None:
                self._collect_all(right)
        else:
            for name in names:
                var_id = self._globals.get(name)
                if var_id is None or name not in scope.declared_globals:
                    continue
                self._link_once(scope.function_id, var_id, "ASSIGNS_TO")
                if node.type == "augmented_assignment":
                    self._link_once(scope.function_id, var_id, "USES_VARIABLE")

        if left is not None and left.type != "identifier":
            targets = left.named_children if left.type in _PATTERN_TYPES else [left]
            for target in targets:
                if target.type != "identifier":
                    self._visit(target, scope)
        type_node = node.child_by_field_name("type")
        if type_node is not None:
            self._visit(type_node, scope)
        if right is not None:
            self._visit(right, scope)

    def _declare_variables(self, node, names: list[str], scope: _Scope) -> None:
        type_node = node.child_by_field_name("type")
        var_scope = "field" if scope.in_class_body else "global"
        for name in names:
            props = {
                "name": name,
                "type": _squash(node_text(type_node)) if type_node is not None else None,
                "scope": var_scope,
                "language": self.language,
                "line": start_line(node),
            }
            if self.b.has(self.b.node_id_for("Variable", props)):
                continue
            var_id = self.b.add_node("Variable", props)
            self.b.relate(var_id, self.file_id, "DEFINED_IN")
            if scope.in_class_body:
                self.b.relate(scope.class_id, var_id, "HAS_FIELD")
            else:
                self._top_level.setdefault(name, ("variable", var_id))

    def _note_read(self, node, scope: _Scope) -> None:
        if scope.function_id is None:
            return
        name = node_text(node)
        var_id = self._globals.get(name)
        if var_id is None or name in scope.params or name in scope.local_names:
            return
        self._link_once(scope.function_id, var_id, "USES_VARIABLE")

    def _link_once(self, source_id: str, target_id: str, rel_type: str) -> None:
        key = (source_id, target_id, rel_type)
        if key not in self._linked:
            self._linked.add(key)
            self.b.relate(source_id, target_id, rel_type)

    # -- calls and raises ----------------------------------------------

    def _visit_call(self, node, scope: _Scope) -> None:
        func = node.child_by_field_name("function")
        if func is None:
            return
        if func.type == "identifier":
            callee = node_text(func)
            chained = False
        elif func.type == "attribute":
            callee = node_text(func.child_by_field_name("attribute"))
            obj = func.child_by_field_name("object")
            chained = obj is not None and obj.type == "call"
        else:
            return
        if not callee:
            return

        args = node.child_by_field_name("arguments")
        if args is None:
            arg_count = 0
        elif args.type == "argument_list":
            arg_count = sum(1 for a in args.named_children if a.type != "comment")
        else:
            # bare generator argument: f(x for x in y)
            arg_count = 1

        line = start_line(node)
        props = {
            "calleeName": callee,
            "line": line,
            "argumentCount": arg_count,
            "isChained": chained,
        }
        call_id = self.b.node_id_for("CallSite", props)
        if not self.b.has(call_id):
            self.b.add_node("CallSite", props)
            self.b.relate(call_id, self.file_id, "DEFINED_IN")
            self.b.relate_unresolved(call_id, "CALLS", "Function", callee)
        if scope.function_id is not None:
            self.b.relate_unresolved(scope.function_id, "CALLS", "Function", callee, {"line": line})

    def _visit_raise(self, node, scope: _Scope) -> None:
        if scope.function_id is None:
            return
        expr = next((c for c in node.named_children if c.type != "comment"), None)
        if expr is not None and expr.type == "call":
            expr = expr.child_by_field_name("function")
        if expr is not None and expr.type in ("identifier", "attribute"):
            self.b.relate_unresolved(scope.function_id, "THROWS", "Class", node_text(expr))

    # -- imports and exports -------------------------------------------

    def _visit_import(self, node) -> None:
        line = start_line(node)
        for child in node.named_children:
            if child.type == "dotted_name":
                self._emit_import(node_text(child), [], None, False, line)
            elif child.type == "aliased_import":
                self._emit_import(
                    node_text(child.child_by_field_name("name")),
                    [],
                    node_text(child.child_by_field_name("alias")),
                    False,
                    line,
                )

    def _visit_import_from(self, node) -> None:
        module_node = node.child_by_field_name("module_name")
        module = node_text(module_node) if module_node is not None else "__future__"
        names: list[str] = []
        aliases: list[str] = []
        for child in node.children_by_field_name("name"):
            if child.type == "aliased_import":
                names.append(node_text(child.child_by_field_name("name")))
                aliases.append(node_text(child.child_by_field_name("alias")))
            else:
                names.append(node_text(child))
        wildcard = any(c.type == "wildcard_import" for c in node.children)
        if wildcard:
            names = ["*"]
        alias = aliases[0] if len(names) == 1 and aliases else None
        self._emit_import(module, names, alias, wildcard, start_line(node))

    def _emit_import(self, module: str, names: list[str], alias: Optional[str],
                     wildcard: bool, line: int) -> None:
        props = {
            "moduleName": module,
            "importedNames": names,
            "isWildcard": wildcard,
            "alias": alias,
            "line": line,
        }
        import_id = self.b.node_id_for("Import", props)
        if self.b.has(import_id):
            return
        self.b.add_node("Import", props)
        self.b.relate(import_id, self.file_id, "DEFINED_IN")
        self.b.relate(self.file_id, import_id, "IMPORTS")
        self.b.relate_unresolved(import_id, "IMPORTS_FROM", "File", module)

    def _collect_all(self, right) -> None:
        if right.type not in ("list", "tuple"):
            return
        for item in right.named_children:
            if item.type == "string":
                value = _string_value(item)
                if value and value not in self._exports:
                    self._exports.append(value)

    def _emit_exports(self) -> None:
        for name in self._exports:
            kind, target_id = self._top_level.get(name, ("variable", None))
            export_id = self.b.add_node("Export", {"name": name, "type": kind, "isDefault": False})
            self.b.relate(export_id, self.file_id, "DEFINED_IN")
            self.b.relate(self.file_id, export_id, "EXPORTS")
            if target_id is not None:
                self.b.relate(export_id, target_id, "EXPORTS_SYMBOL")

    # -- comments ------------------------------------------------------

    def _visit_comment(self, node) -> None:
        text = node_text(node).lstrip("#").strip()
        if not text:
            return
        line = start_line(node)
        props = {"text": text, "type": "line", "startLine": line, "endLine": line}
        comment_id = self.b.node_id_for("Comment", props)
        if self.b.has(comment_id):
            return
        self.b.add_node("Comment", props)
        self.b.relate(comment_id, self.file_id, "DEFINED_IN")

    def _emit_docstring(self, string_node, target_id: str) -> None:
        text = _string_value(string_node).strip()
        if not text:
            return
        props = {
            "text": text,
            "type": "docstring",
            "startLine": start_line(string_node),
            "endLine": end_line(string_node),
        }
        comment_id = self.b.node_id_for("Comment", props)
        if self.b.has(comment_id):
            return
        self.b.add_node("Comment", props)
        self.b.relate(comment_id, self.file_id, "DEFINED_IN")
        self.b.relate(comment_id, target_id, "DOCUMENTS")


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class PythonExtractor(LanguageExtractor):
    """Extracts the CodeGraph_v1 vocabulary from Python source."""

    language = "python"
    extensions = (".py", ".pyw", ".pyi")

    def __init__(self) -> None:
        self._parser = ts.Parser(load_ts_language(self.language, tsp.language))

    def extract(
        self,
        source_text: str,
        file_path: str,
        last_modified: Optional[str] = None,
    ) -> ExtractionResult:
        source = source_text.encode("utf-8")
        tree = self._parser.parse(source)
        root = tree.root_node
        if root.has_error:
            bad = first_error(root)
            line = start_line(bad) if bad is not None else 0
            raise ExtractionError(file_path, f"syntax error at line {line}")

        builder = FragmentBuilder(file_path, self.language)
        file_id = builder.add_node("File", {
            "path": file_path,
            "language": self.language,
            "size": len(source),
            "hash": file_hash(source_text),
            "lastModified": last_modified,
        })
        _PythonWalker(builder, file_id).run(root)
        result = builder.build()
        logger.debug(
            "Extracted %s: %d nodes, %d relationships",
            file_path, len(result.nodes), len(result.relationships),
        )
        return result
