"""
Render a file's graph neighbourhood as a search-ready Markdown document plus
the metadata the knowledge store indexes it under.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .graph.accumulator import GraphAccumulator
from .graph.models import Node, Relationship

logger = logging.getLogger(__name__)

MAX_IMPORTS = 10
MAX_CALLS = 5
MAX_TOPICS = 10

_EXTENSION = re.compile(r"\.[^.]+$")

_LANGUAGE_TAGS: dict[str, str] = {
    "python": "🐍",
    "javascript": "🟨",
    "typescript": "🔷",
}


class ContentSynthesizer:
    """
    Turns an accumulated per-file graph into text.

    The output is a pure function of the graph (and optional source), so the
    same file always renders to the same document.
    """

    def render_document(
        self,
        file_path: str,
        graph: GraphAccumulator,
        source_text: Optional[str] = None,
    ) -> str:
        """
        Build the Markdown document for *file_path*.

        Sections, in order: header, imports (first 10), classes, functions,
        then the verbatim source when *source_text* is given.  A file with no
        File node in *graph* renders as ``File: {path}``.
        """
        file_node = graph.file_node(file_path)
        if file_node is None:
            logger.debug("No File node for %s; rendering stub document", file_path)
            return f"File: {file_path}"

        props = file_node.properties
        language = props.get("language", "unknown")
        lines: list[str] = [
            f"# Code File: {file_path}",
            "",
            f"**Language:** {language}",
            f"**Size:** {props.get('size', 0)} bytes",
            f"**Hash:** {str(props.get('hash', ''))[:8]}",
            "",
        ]

        imports = [
            graph.get_node(rel.target_node_id)
            for rel in graph.outgoing(file_node.id, "IMPORTS")
        ]
        imports = _unique([n for n in imports if n is not None and n.label == "Import"])
        if imports:
            lines.append(f"## Imports ({len(imports)})")
            for imp in imports[:MAX_IMPORTS]:
                entry = f"- {imp.properties.get('moduleName', '')}"
                names = imp.properties.get("importedNames") or []
                if names:
                    entry += f" ({', '.join(names)})"
                lines.append(entry)
            if len(imports) > MAX_IMPORTS:
                lines.append(f"... and {len(imports) - MAX_IMPORTS} more")
            lines.append("")

        classes = graph.nodes_defined_in(file_node.id, "Class")
        if classes:
            lines.append(f"## Classes ({len(classes)})")
            for cls in classes:
                lines.extend(self._render_class(cls, graph))
                lines.append("")

        functions = graph.nodes_defined_in(file_node.id, "Function")
        if functions:
            lines.append(f"## Functions ({len(functions)})")
            for func in functions:
                lines.extend(self._render_function(func, graph, language))
                lines.append("")

        if source_text:
            lines.extend(["## Full Source Code", f"```{language}", source_text, "```"])

        return "\n".join(lines) + "\n"

    def render_metadata(self, file_path: str, graph: GraphAccumulator) -> dict:
        """
        Build the metadata record for *file_path*.

        Returns
        -------
        dict
            Keys: filePath, language, topics (at most 10, unique), and tags
            (emoji markers) when the file is known.
        """
        file_node = graph.file_node(file_path)
        if file_node is None:
            return {"filePath": file_path, "language": "unknown", "topics": ["code"]}

        language = file_node.properties.get("language", "unknown")
        topics = ["code", language]
        for part in file_path.split("/"):
            if part and part not in (".", "..") and not part.startswith("."):
                topics.append(_EXTENSION.sub("", part))
        if graph.nodes_defined_in(file_node.id, "Class"):
            topics.append("classes")
        if graph.nodes_defined_in(file_node.id, "Function"):
            topics.append("functions")

        tags = ["💻", "📄"]
        if language in _LANGUAGE_TAGS:
            tags.append(_LANGUAGE_TAGS[language])

        return {
            "filePath": file_path,
            "language": language,
            "topics": list(dict.fromkeys(topics))[:MAX_TOPICS],
            "tags": tags,
        }

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _render_class(self, cls: Node, graph: GraphAccumulator) -> list[str]:
        props = cls.properties
        lines = [
            f"### {props.get('name', '')}",
            f"Lines {props.get('startLine')}-{props.get('endLine')}",
        ]
        methods = [
            graph.get_node(rel.target_node_id)
            for rel in graph.outgoing(cls.id, "HAS_METHOD")
        ]
        methods = [m for m in methods if m is not None]
        if methods:
            lines.append(f"Methods: {', '.join(m.properties.get('name', '') for m in methods)}")
        bases = [_target_name(rel, graph, "Unknown") for rel in graph.outgoing(cls.id, "EXTENDS")]
        if bases:
            lines.append(f"Extends: {', '.join(bases)}")
        return lines

    def _render_function(self, func: Node, graph: GraphAccumulator, language: str) -> list[str]:
        props = func.properties
        lines = [f"### {props.get('name', '')}"]
        if props.get("signature"):
            lines.extend([f"```{language}", props["signature"], "```"])
        lines.append(f"Lines {props.get('startLine')}-{props.get('endLine')}")

        calls = [_target_name(rel, graph, "unknown") for rel in graph.outgoing(func.id, "CALLS")]
        if calls:
            entry = f"Calls: {', '.join(calls[:MAX_CALLS])}"
            if len(calls) > MAX_CALLS:
                entry += f", ... ({len(calls) - MAX_CALLS} more)"
            lines.append(entry)

        decorators = [
            _target_name(rel, graph, "unknown")
            for rel in graph.outgoing(func.id, "DECORATED_WITH")
        ]
        if decorators:
            lines.append(f"Decorators: @{', @'.join(decorators)}")
        return lines


def _target_name(rel: Relationship, graph: GraphAccumulator, default: str) -> str:
    """Name of *rel*'s target node, else the name recorded on the edge."""
    node = graph.get_node(rel.target_node_id)
    if node is not None and node.name:
        return node.name
    return str(rel.properties.get("targetName") or default)


def _unique(nodes: list[Node]) -> list[Node]:
    seen: set[str] = set()
    out: list[Node] = []
    for node in nodes:
        if node.id not in seen:
            seen.add(node.id)
            out.append(node)
    return out
