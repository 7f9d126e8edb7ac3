"""Dot-path helpers over nested ``dict`` trees."""

from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Tuple

_MISSING = object()


def split_path(path: str) -> Tuple[str, ...]:
    parts = tuple(p for p in (path or "").split(".") if p)
    if not parts:
        raise ValueError("empty key path")
    return parts


def get_path(tree: Mapping[str, Any] | None, path: str, default: Any = None) -> Any:
    node: Any = tree
    for part in split_path(path):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def has_path(tree: Mapping[str, Any] | None, path: str) -> bool:
    return get_path(tree, path, _MISSING) is not _MISSING


def set_path(tree: MutableMapping[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at ``path``, creating (or replacing non-dict) intermediates."""
    parts = split_path(path)
    node: MutableMapping[str, Any] = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def unset_path(tree: MutableMapping[str, Any], path: str) -> bool:
    """Remove ``path`` and prune parents left empty. Returns True if something was removed."""
    parts = split_path(path)
    chain = [tree]
    node: Any = tree
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, Mapping) else None
        if not isinstance(node, dict):
            return False
        chain.append(node)
    if parts[-1] not in node:
        return False
    del node[parts[-1]]
    for depth in range(len(parts) - 2, -1, -1):
        parent = chain[depth]
        child = parent.get(parts[depth])
        if isinstance(child, dict) and not child:
            del parent[parts[depth]]
        else:
            break
    return True


__all__ = [
    "split_path",
    "get_path",
    "has_path",
    "set_path",
    "unset_path",
]
