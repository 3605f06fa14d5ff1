from __future__ import annotations

import re
from urllib.parse import quote, unquote
from typing import Mapping, Optional, Tuple

from ..inventory.schema import NodeReading
from ..jenkins.client import base_url

ALERT_OFFLINE = "offline"
ALERT_DISK = "disk"
ALERT_CLASSES = (ALERT_OFFLINE, ALERT_DISK)

OFFLINE_RECOVERY_COMMENT = "The machine is now online again 🙌"
DISK_RECOVERY_COMMENT = "The machine has now enough disk space 🙌"

_MARKER_RE = re.compile(r"<!--\s*jenkins-inventory:node=(?P<node>.*?);alert=(?P<alert>[a-z]+)\s*-->")


def offline_title(name: str) -> str:
    return f"{name} is DOWN"


def disk_title(name: str) -> str:
    return f"{name} has low disk space"


def title_for(alert: str, name: str) -> str:
    if alert == ALERT_OFFLINE:
        return offline_title(name)
    if alert == ALERT_DISK:
        return disk_title(name)
    raise ValueError(f"Unknown alert class: {alert}")


def correlation_marker(node_key: str, alert: str) -> str:
    # '-' is escaped too: "--" is not allowed inside an HTML comment.
    safe_key = quote(node_key, safe="").replace("-", "%2D")
    return f"<!-- jenkins-inventory:node={safe_key};alert={alert} -->"


def parse_correlation_marker(body: Optional[str]) -> Optional[Tuple[str, str]]:
    if not body:
        return None
    m = _MARKER_RE.search(body)
    if not m:
        return None
    alert = m.group("alert")
    if alert not in ALERT_CLASSES:
        return None
    return unquote(m.group("node")), alert


def node_url(domain: str, name: str) -> str:
    return f"{base_url(domain)}/computer/{quote(name, safe='()')}/"


def render_down_body(node_key: str, node: Mapping[str, object], domain: str) -> str:
    name = str(node.get("name") or node_key)
    reason = node.get("offlineReason") or "No reason reported by Jenkins"
    lines = [
        f"The machine **{name}** is offline in Jenkins.",
        "",
        f"- Reason: {reason}",
        f"- Temporarily offline: {'yes' if node.get('isTemporarilyOffline') else 'no'}",
        f"- Details: {node_url(domain, name)}",
        "",
        "This issue will be closed automatically once the machine is back online.",
        "",
        correlation_marker(node_key, ALERT_OFFLINE),
    ]
    return "\n".join(lines)


def render_disk_alert_body(
    node_key: str,
    node: Mapping[str, object],
    domain: str,
    reading: Optional[NodeReading] = None,
) -> str:
    name = str(node.get("name") or node_key)
    usage = node.get("diskUsage")
    lines = [
        f"The machine **{name}** is running out of disk space.",
        "",
        f"- Disk usage: {usage}%",
    ]
    if reading is not None and reading.free_bytes is not None and reading.total_bytes is not None:
        lines.append(f"- Free: {_human_bytes(reading.free_bytes)} of {_human_bytes(reading.total_bytes)}")
    lines.extend(
        [
            f"- Details: {node_url(domain, name)}",
            "",
            "This issue will be closed automatically once the disk usage drops below the alert level.",
            "",
            correlation_marker(node_key, ALERT_DISK),
        ]
    )
    return "\n".join(lines)


def _human_bytes(n: int) -> str:
    value = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"
