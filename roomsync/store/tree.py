from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

SERVER_TIMESTAMP: dict[str, str] = {".sv": "timestamp"}


def split_path(path: str) -> list[str]:
    """'rooms/7XQP/moveId' -> ['rooms', '7XQP', 'moveId']"""
    segs = [s for s in path.strip("/").split("/") if s]
    if not segs:
        raise ValueError("empty store path")
    return segs


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p.strip("/"))


def is_server_timestamp(value: Any) -> bool:
    return isinstance(value, Mapping) and dict(value) == SERVER_TIMESTAMP


def resolve_server_values(value: Any, now_ms: int) -> Any:
    if is_server_timestamp(value):
        return now_ms
    if isinstance(value, Mapping):
        return {str(k): resolve_server_values(v, now_ms) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_server_values(v, now_ms) for v in value]
    return value


def normalize(value: Any) -> Any:
    """
    Drop null children and empty objects; the store never holds either.
    Returns None when nothing is left.
    """
    if isinstance(value, Mapping):
        out = {}
        for k, v in value.items():
            nv = normalize(v)
            if nv is not None:
                out[str(k)] = nv
        return out or None
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def get_in(node: Any, segs: Iterable[str]) -> Any:
    for s in segs:
        if not isinstance(node, dict):
            return None
        node = node.get(s)
        if node is None:
            return None
    return copy.deepcopy(node)


def set_in(root: Any, segs: list[str], value: Any) -> Any:
    """
    Return a new tree with `value` stored at `segs` (None deletes).
    `root` is not modified.
    """
    value = normalize(value)
    if not segs:
        return copy.deepcopy(value)
    head, rest = segs[0], segs[1:]
    base = dict(root) if isinstance(root, dict) else {}
    child = set_in(base.get(head), rest, value)
    if child is None:
        base.pop(head, None)
    else:
        base[head] = child
    return base or None


def apply_update(root: Any, segs: list[str], fields: Mapping[str, Any], now_ms: int) -> Any:
    """Merge `fields` (relative paths allowed) under `segs`; all-or-nothing on a copy."""
    out = root
    for rel, v in fields.items():
        out = set_in(out, segs + split_path(rel), resolve_server_values(v, now_ms))
    return out
