"""Helpers for picking fields out of decoded JSON payloads."""

from __future__ import annotations

from typing import Any


def dig(payload: Any, path: str) -> Any:
    """Resolve a dotted path (`data.0.outAmount`) inside decoded JSON."""
    if not path:
        return payload
    node = payload
    for part in path.split("."):
        if isinstance(node, dict):
            node = node.get(part)
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return None
        if node is None:
            return None
    return node
