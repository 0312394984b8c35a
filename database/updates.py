"""
Partial-update operators for stored documents.

Supported operators:
  $set       {"status": "EXPIRED", "reactions.$.queue_id": "job_ab12"}
  $unset     {"current_group": ""}
  $push      {"invited_groups": "g1"}
  $addToSet  {"members": "u1"}
  $pull      {"invited_groups": "g1"} or {"reactions": {"user_id": "u1", "emoji": "🔥"}}

Positional paths (``field.$.sub``) resolve to the first array element that
matches the ``$elemMatch`` filter for ``field`` in the accompanying condition.
"""
from __future__ import annotations

import copy
from typing import Any, Optional

from utils.conditions import matches


def _resolve_positional(doc: dict, path: str, condition: Optional[dict]) -> list[str]:
    parts = path.split(".")
    if "$" not in parts:
        return parts
    idx = parts.index("$")
    array_field = ".".join(parts[:idx])
    elem_filter = ((condition or {}).get(array_field) or {}).get("$elemMatch")
    if elem_filter is None:
        raise ValueError(f"Positional update on '{array_field}' requires an $elemMatch condition")
    array = _get_parent(doc, parts[:idx]).get(parts[idx - 1]) or []
    for i, item in enumerate(array):
        if isinstance(item, dict) and matches(item, elem_filter):
            return parts[:idx] + [str(i)] + parts[idx + 1:]
    raise ValueError(f"No element of '{array_field}' matches the positional filter")


def _get_parent(doc: dict, parts: list[str]) -> Any:
    """Walk to the container holding the last path segment, creating dicts as needed."""
    current: Any = doc
    for part in parts[:-1]:
        if isinstance(current, list):
            current = current[int(part)]
        else:
            current = current.setdefault(part, {})
    return current


def _set(doc: dict, parts: list[str], value: Any) -> bool:
    parent = _get_parent(doc, parts)
    key = parts[-1]
    if isinstance(parent, list):
        i = int(key)
        if parent[i] == value:
            return False
        parent[i] = value
        return True
    if key in parent and parent[key] == value:
        return False
    parent[key] = copy.deepcopy(value)
    return True


def _unset(doc: dict, parts: list[str]) -> bool:
    parent = _get_parent(doc, parts)
    if isinstance(parent, dict) and parent.get(parts[-1]) is not None:
        parent.pop(parts[-1])
        return True
    return False


def _array(doc: dict, parts: list[str]) -> list:
    parent = _get_parent(doc, parts)
    arr = parent.get(parts[-1])
    if arr is None:
        arr = parent[parts[-1]] = []
    return arr


def apply_update(doc: dict[str, Any], update: dict[str, Any], condition: Optional[dict] = None) -> bool:
    """Apply ``update`` to ``doc`` in place. Returns True if anything changed."""
    changed = False
    for op_name, fields in update.items():
        for path, value in fields.items():
            parts = _resolve_positional(doc, path, condition)
            if op_name == "$set":
                changed |= _set(doc, parts, value)
            elif op_name == "$unset":
                changed |= _unset(doc, parts)
            elif op_name == "$push":
                _array(doc, parts).append(copy.deepcopy(value))
                changed = True
            elif op_name == "$addToSet":
                arr = _array(doc, parts)
                if value not in arr:
                    arr.append(copy.deepcopy(value))
                    changed = True
            elif op_name == "$pull":
                arr = _array(doc, parts)
                if isinstance(value, dict):
                    kept = [i for i in arr if not (isinstance(i, dict) and matches(i, value))]
                else:
                    kept = [i for i in arr if i != value]
                if len(kept) != len(arr):
                    arr[:] = kept
                    changed = True
            else:
                raise ValueError(f"Unsupported update operator: {op_name}")
    return changed
