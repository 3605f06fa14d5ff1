from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

from ..logging import get_logger
from ..util.errors import IntegrityError
from ..util.serialization import pretty_json_dumps
from .schema import Inventory

LOG = get_logger(__name__)


def _node_problems(key: str, node: Any) -> List[str]:
    if not isinstance(node, dict):
        return [f"node '{key}' must be an object, got {type(node).__name__}"]
    problems: List[str] = []
    name = node.get("name")
    if not isinstance(name, str) or not name.strip():
        problems.append(f"node '{key}' field 'name' must be a non-empty string")
    if not isinstance(node.get("isOffline"), bool):
        problems.append(f"node '{key}' field 'isOffline' must be a boolean")
    if "diskUsage" in node and node["diskUsage"] is not None:
        usage = node["diskUsage"]
        if isinstance(usage, bool) or not isinstance(usage, int):
            problems.append(f"node '{key}' field 'diskUsage' must be an integer or null")
        elif not 0 <= usage <= 100:
            problems.append(f"node '{key}' field 'diskUsage' must be between 0 and 100")
    return problems


def validate_inventory(inventory: Any) -> None:
    """
    Check the persisted inventory shape. Extra descriptive fields are allowed;
    anything the reconciliation relies on must be present and well typed.
    Never repairs: a broken database aborts the run.
    """
    if not isinstance(inventory, dict):
        raise IntegrityError(f"Inventory must be a JSON object keyed by node, got {type(inventory).__name__}")
    problems: List[str] = []
    for key, node in inventory.items():
        problems.extend(_node_problems(str(key), node))
    if problems:
        shown = "; ".join(problems[:5])
        more = f" (+{len(problems) - 5} more)" if len(problems) > 5 else ""
        raise IntegrityError(f"Inventory failed integrity check: {shown}{more}")


def load_inventory(path: Path) -> Inventory:
    """
    Read the persisted inventory. A missing file is a first run and yields {}.
    """
    if not path.exists():
        LOG.info("Database does not exist, starting from an empty inventory", extra={"path": str(path)})
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityError(f"Inventory file {path} is not valid UTF-8 JSON: {e}") from e
    validate_inventory(data)
    return data


def persist_inventory(path: Path, inventory: Inventory) -> Path:
    """
    Overwrite the database with the new inventory. Never merges with prior content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(pretty_json_dumps(inventory), encoding="utf-8")
    return path
