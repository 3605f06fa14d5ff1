from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..inventory.schema import Inventory, NodeReading, NodeState
from ..issues.templates import ALERT_OFFLINE, offline_title, render_down_body
from ..logging import get_logger

LOG = get_logger(__name__)

DISK_MONITOR = "hudson.node_monitors.DiskSpaceMonitor"
ARCH_MONITOR = "hudson.node_monitors.ArchitectureMonitor"


@dataclass(frozen=True)
class PendingIssue:
    node_key: str
    alert: str
    title: str
    body: str


@dataclass
class ReconcileResult:
    inventory: Inventory
    report_rows: List[Dict[str, Any]] = field(default_factory=list)
    pending_issues: List[PendingIssue] = field(default_factory=list)
    readings: Dict[str, NodeReading] = field(default_factory=dict)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def disk_usage_percent(free: Optional[int], total: Optional[int]) -> Optional[int]:
    """
    Used space as an integer percentage, rounded half up and clamped to 0-100.
    None when Jenkins does not report a total size (older cores, offline agents).
    """
    if free is None or total is None or total <= 0:
        return None
    used = max(total - free, 0)
    pct = (used * 100 + total // 2) // total
    return max(0, min(100, pct))


def _disk_sizes(computer: Mapping[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    monitors = computer.get("monitorData") or {}
    disk = monitors.get(DISK_MONITOR)
    if not isinstance(disk, dict):
        return None, None
    return _as_int(disk.get("size")), _as_int(disk.get("totalSize"))


def node_from_computer(computer: Mapping[str, Any]) -> NodeState:
    """Persisted state of one node; only fields that change when the node does."""
    monitors = computer.get("monitorData") or {}
    free, total = _disk_sizes(computer)
    arch = monitors.get(ARCH_MONITOR)
    reason = computer.get("offlineCauseReason") or None
    name = str(computer.get("displayName") or "").strip()
    return {
        "name": name,
        "displayName": name,
        "isOffline": bool(computer.get("offline")),
        "isTemporarilyOffline": bool(computer.get("temporarilyOffline")),
        "offlineReason": str(reason) if reason else None,
        "numExecutors": _as_int(computer.get("numExecutors")) or 0,
        "architecture": str(arch) if isinstance(arch, str) and arch else None,
        "diskUsage": disk_usage_percent(free, total),
    }


def reading_from_computer(computer: Mapping[str, Any]) -> NodeReading:
    free, total = _disk_sizes(computer)
    return NodeReading(idle=bool(computer.get("idle")), free_bytes=free, total_bytes=total)


def _status_label(node: NodeState) -> str:
    if not node.get("isOffline"):
        return "online"
    if node.get("isTemporarilyOffline"):
        return "temporarily offline"
    return "offline"


def _should_report_down(
    key: str,
    node: NodeState,
    previous: Mapping[str, Mapping[str, Any]],
    notify_on_unknown: bool,
) -> bool:
    if not node.get("isOffline"):
        return False
    before = previous.get(key)
    if before is None:
        return notify_on_unknown
    # Already offline last run: its DOWN issue was raised back then.
    return not before.get("isOffline")


def reconcile(
    snapshot: Mapping[str, Any],
    previous: Mapping[str, Mapping[str, Any]],
    domain: str,
    notify_on_unknown: bool,
) -> ReconcileResult:
    """
    Build the new inventory from a Jenkins computer snapshot.

    Nodes are keyed by display name. The inventory is rebuilt from the
    snapshot alone: nodes missing from Jenkins drop out. A DOWN issue is
    queued for every node that went offline since the previous run, and for
    nodes seen offline on their first appearance when notify_on_unknown is set.
    When two computers share a display name the last one wins.
    """
    inventory: Inventory = {}
    readings: Dict[str, NodeReading] = {}
    for computer in snapshot.get("computer") or []:
        if not isinstance(computer, dict):
            continue
        node = node_from_computer(computer)
        key = node["name"]
        if not key:
            continue
        if key in inventory:
            LOG.warning("Duplicate Jenkins display name, earlier entry replaced", extra={"node": key})
        inventory[key] = node
        readings[key] = reading_from_computer(computer)

    rows: List[Dict[str, Any]] = []
    pending: List[PendingIssue] = []
    for key in sorted(inventory):
        node = inventory[key]
        rows.append(
            {
                "key": key,
                "name": node["name"],
                "status": _status_label(node),
                "diskUsage": node.get("diskUsage"),
                "architecture": node.get("architecture"),
                "numExecutors": node.get("numExecutors"),
                "offlineReason": node.get("offlineReason"),
            }
        )
        if _should_report_down(key, node, previous, notify_on_unknown):
            pending.append(
                PendingIssue(
                    node_key=key,
                    alert=ALERT_OFFLINE,
                    title=offline_title(node["name"]),
                    body=render_down_body(key, node, domain),
                )
            )

    return ReconcileResult(inventory=inventory, report_rows=rows, pending_issues=pending, readings=readings)
