from __future__ import annotations

from collections import Counter
from typing import Any, Mapping, Optional, Sequence

from rich.console import Console
from rich.table import Table


def _issue_action_counts(actions: Sequence[Any]) -> Counter:
    counts: Counter = Counter()
    for a in actions:
        counts[f"{a.kind}:{a.alert}"] += 1
    return counts


def build_summary_table(
    inventory: Mapping[str, Mapping[str, Any]],
    *,
    changed: bool,
    failed: bool,
    actions: Sequence[Any] = (),
    disk_alert_level: int = 0,
) -> Table:
    table = Table(title="Jenkins inventory run", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    offline = sum(1 for n in inventory.values() if n.get("isOffline"))
    table.add_row("Machines", str(len(inventory)))
    table.add_row("Offline", str(offline))
    if disk_alert_level > 0:
        over = sum(
            1
            for n in inventory.values()
            if isinstance(n.get("diskUsage"), int) and n["diskUsage"] >= disk_alert_level
        )
        table.add_row(f"Disk usage >= {disk_alert_level}%", str(over))
    table.add_row("Database changed", "yes" if changed else "no")
    counts = _issue_action_counts(actions)
    for key in sorted(counts):
        kind, alert = key.split(":", 1)
        table.add_row(f"Issues {kind}d ({alert})", str(counts[key]))
    table.add_row("Status", "[red]FAILED[/red]" if failed else "[green]OK[/green]")
    return table


def print_summary(table: Table, console: Optional[Console] = None) -> None:
    (console or Console(stderr=True)).print(table)
