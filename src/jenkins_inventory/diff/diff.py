from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

from ..inventory.store import load_inventory
from ..util.serialization import stable_json_dumps
from .hash import stable_record_hash


def has_changes(previous: Mapping[str, Any], current: Mapping[str, Any]) -> bool:
    """
    True when the two inventories differ anywhere: keys, values or nested values.
    Compared through canonical JSON so key order is ignored but True and 1 differ.
    """
    return stable_json_dumps(previous) != stable_json_dumps(current)


def compute_diff(
    previous: Mapping[str, Mapping[str, Any]],
    current: Mapping[str, Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Compute a per-node diff between two inventories.
    Returns a structure containing:
      - added/removed/changed/unchanged as sorted lists of node keys
      - summary counts
    """
    prev_keys = set(previous.keys())
    curr_keys = set(current.keys())

    added: List[str] = sorted(curr_keys - prev_keys)
    removed: List[str] = sorted(prev_keys - curr_keys)
    changed: List[str] = []
    unchanged: List[str] = []

    for key in sorted(prev_keys & curr_keys):
        if stable_record_hash(previous[key]) != stable_record_hash(current[key]):
            changed.append(key)
        else:
            unchanged.append(key)

    summary = {
        "added": len(added),
        "removed": len(removed),
        "changed": len(changed),
        "unchanged": len(unchanged),
        "prev_total": len(previous),
        "curr_total": len(current),
    }

    return {
        "added": added,
        "removed": removed,
        "changed": changed,
        "unchanged": unchanged,
        "summary": summary,
    }


def diff_files(prev_path: Path, curr_path: Path) -> Dict[str, Any]:
    for p in (prev_path, curr_path):
        if not p.exists():
            raise FileNotFoundError(f"Inventory file not found: {p}")
    return compute_diff(load_inventory(prev_path), load_inventory(curr_path))


def render_diff(diff_obj: Dict[str, Any]) -> str:
    return json.dumps(diff_obj, sort_keys=True, indent=2, ensure_ascii=False)
