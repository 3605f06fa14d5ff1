from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .issues.templates import node_url
from .util.errors import IntegrityError

DEFAULT_START_TAG = "<!-- JENKINS-REPORTING:START -->"
DEFAULT_END_TAG = "<!-- JENKINS-REPORTING:END -->"

STATUS_ICONS = {
    "online": "🟢",
    "temporarily offline": "🟠",
    "offline": "🔴",
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _md_cell(value: str) -> str:
    # Escape pipes and flatten newlines so a cell never splits the table.
    v = (value or "").replace("\n", "<br>").strip()
    return v.replace("|", "\\|")


def _md_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> List[str]:
    out: List[str] = []
    out.append("| " + " | ".join(_md_cell(str(h)) for h in headers) + " |")
    out.append("| " + " | ".join(["---"] * len(headers)) + " |")
    for r in rows:
        out.append("| " + " | ".join(_md_cell(str(c)) for c in r) + " |")
    return out


def _disk_cell(usage: Any) -> str:
    if isinstance(usage, int) and not isinstance(usage, bool):
        return f"{usage}%"
    return "n/a"


def render_report(
    rows: Sequence[Dict[str, Any]],
    domain: str,
    use_tags: bool,
    *,
    generated_at: Optional[str] = None,
) -> str:
    """
    Render the node status report as Markdown.

    With use_tags the output is a fragment meant to sit between the start/end
    markers of a larger document, so it has no top-level title.
    """
    generated = generated_at or _utc_now_iso()
    total = len(rows)
    offline = sum(1 for r in rows if r.get("status") != "online")

    lines: List[str] = []
    if not use_tags:
        lines.append("# Jenkins Status")
        lines.append("")
    lines.append(f"_Last updated: {generated} from `{domain}`_")
    lines.append("")
    lines.append(f"**{total - offline}** of **{total}** machines online.")
    lines.append("")

    if not rows:
        lines.append("No machines reported by Jenkins.")
        return "\n".join(lines) + "\n"

    table_rows: List[List[str]] = []
    for r in rows:
        status = str(r.get("status") or "unknown")
        name = str(r.get("name") or r.get("key") or "")
        table_rows.append(
            [
                f"[{name}]({node_url(domain, name)})",
                f"{STATUS_ICONS.get(status, '⚪')} {status}",
                _disk_cell(r.get("diskUsage")),
                str(r.get("architecture") or "unknown"),
                str(r.get("numExecutors") if r.get("numExecutors") is not None else ""),
                str(r.get("offlineReason") or ""),
            ]
        )
    lines.extend(_md_table(["Machine", "Status", "Disk usage", "Architecture", "Executors", "Offline reason"], table_rows))
    return "\n".join(lines) + "\n"


def segment_bounds(original: str, start_tag: str, end_tag: str) -> Optional[Tuple[int, int]]:
    """
    Return (start, end) offsets of the managed segment including both markers,
    or None when the document has neither marker. A lone marker, or an end
    marker before the start marker, raises IntegrityError.
    """
    start = original.find(start_tag)
    end = original.find(end_tag, start + len(start_tag)) if start != -1 else -1
    if start != -1 and end != -1:
        return start, end + len(end_tag)
    if start == -1 and end_tag not in original:
        return None
    raise IntegrityError(f"Report has an unmatched segment marker; expected {start_tag} followed by {end_tag}")


def splice_segment(original: str, segment: str, start_tag: str, end_tag: str) -> str:
    """
    Replace the text between start_tag and end_tag with segment. Content outside
    the markers is returned unchanged. When neither marker is present a new
    tagged block is appended to the end of original.
    """
    block = f"{start_tag}\n{segment.rstrip(chr(10))}\n{end_tag}"
    bounds = segment_bounds(original, start_tag, end_tag)
    if bounds is None:
        if not original:
            return block + "\n"
        sep = "" if original.endswith("\n") else "\n"
        return f"{original}{sep}\n{block}\n"
    start, end = bounds
    return original[:start] + block + original[end:]


def read_previous_report(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8")


def write_report(
    path: Path,
    content: str,
    *,
    use_tags: bool,
    start_tag: str = DEFAULT_START_TAG,
    end_tag: str = DEFAULT_END_TAG,
    previous: Optional[str] = None,
) -> Path:
    """
    Write the report. With use_tags only the managed segment of the existing
    document is replaced; otherwise the file is overwritten.
    """
    text = content
    if use_tags:
        original = previous if previous is not None else read_previous_report(path)
        text = splice_segment(original, content, start_tag, end_tag)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path
