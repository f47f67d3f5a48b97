"""
Deterministic node identity.

IDs are composed purely from semantic key fields so re-indexing the same
file in any process reproduces the same IDs; this is what lets the knowledge
store recognise unchanged symbols instead of duplicating them.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Mapping

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")
_UNDERSCORES = re.compile(r"_{2,}")

UNKNOWN = "unknown"


def sanitize_for_id(value: Any) -> str:
    """
    Return *value* folded into an ID-safe token.

    Characters outside ``[A-Za-z0-9_-]`` become ``_``, runs of ``_`` collapse,
    leading/trailing ``_`` are stripped and the result is lower-cased.
    Missing or empty input yields ``"unknown"``.
    """
    if value is None or value == "":
        return UNKNOWN
    text = _UNSAFE.sub("_", str(value))
    text = _UNDERSCORES.sub("_", text).strip("_").lower()
    return text or UNKNOWN


def _line(value: Any) -> str:
    return str(int(value)) if value is not None else "0"


def _fallback_id(label: str, properties: Mapping[str, Any]) -> str:
    canonical = json.dumps(dict(properties), sort_keys=True, default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"{label.lower()}_{digest}"


def node_id(label: str, properties: Mapping[str, Any]) -> str:
    """
    Compute the deterministic ID for a node of type *label*.

    Parameters
    ----------
    label:
        Node label (``"File"``, ``"Function"`` ...).
    properties:
        Key fields for the label.  Symbol labels expect ``filePath`` in
        addition to their own properties; a missing ``filePath`` sanitises to
        ``unknown``, which is how speculative cross-file targets are keyed.
    """
    p = properties
    s = sanitize_for_id
    if label == "File":
        return f"file_{s(p.get('path'))}"
    if label == "Function":
        return f"func_{s(p.get('filePath'))}_{s(p.get('name'))}_{_line(p.get('startLine'))}"
    if label == "Class":
        return f"class_{s(p.get('filePath'))}_{s(p.get('name'))}"
    if label == "Import":
        return f"import_{s(p.get('filePath'))}_{s(p.get('moduleName'))}"
    if label == "Export":
        return f"export_{s(p.get('filePath'))}_{s(p.get('name'))}"
    if label == "Variable":
        return (
            f"var_{s(p.get('filePath'))}_{s(p.get('name'))}_"
            f"{p.get('scope')}_{_line(p.get('line'))}"
        )
    if label == "CallSite":
        return f"call_{s(p.get('filePath'))}_{s(p.get('calleeName'))}_{_line(p.get('line'))}"
    if label == "Decorator":
        return f"dec_{s(p.get('filePath'))}_{s(p.get('name'))}_{_line(p.get('line'))}"
    if label == "Comment":
        return f"comment_{s(p.get('filePath'))}_{_line(p.get('startLine'))}"
    if label == "Package":
        return f"pkg_{s(p.get('name'))}_{s(p.get('version') or 'latest')}"
    return _fallback_id(label, p)


def placeholder_id(label: str, name: str) -> str:
    """ID for a speculative target whose origin file is not known."""
    if label == "Function":
        return node_id("Function", {"name": name, "startLine": 0})
    if label == "File":
        return f"file_{UNKNOWN}_{sanitize_for_id(name)}"
    return node_id(label, {"name": name})


def file_hash(text: str) -> str:
    """SHA-256 hex digest of *text* encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
