from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pytest

from jenkins_inventory.github.issues import TrackingIssue
from jenkins_inventory.util.errors import TransportError


class FakeTracker:
    """In-memory issue tracker recording every call in order."""

    def __init__(self, issues: Optional[List[TrackingIssue]] = None, *, fail_on: Optional[str] = None) -> None:
        self.issues: Dict[int, TrackingIssue] = {i.number: i for i in (issues or [])}
        self.calls: List[tuple] = []
        self.fail_on = fail_on
        self._next = max(self.issues, default=0) + 1

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise TransportError(f"{name} failed", status_code=502)

    def create_issue(
        self, title: str, body: str, labels: Sequence[str], assignees: Sequence[str]
    ) -> TrackingIssue:
        self._maybe_fail("create_issue")
        issue = TrackingIssue(number=self._next, title=title, state="open", body=body)
        self._next += 1
        self.issues[issue.number] = issue
        self.calls.append(("create", title, list(labels), list(assignees)))
        return issue

    def list_open_issues(self) -> List[TrackingIssue]:
        self._maybe_fail("list_open_issues")
        self.calls.append(("list",))
        return [i for i in self.issues.values() if i.state == "open"]

    def comment_on_issue(self, number: int, body: str) -> None:
        self._maybe_fail("comment_on_issue")
        self.calls.append(("comment", number, body))

    def set_issue_state(self, number: int, state: str) -> None:
        self._maybe_fail("set_issue_state")
        issue = self.issues[number]
        self.issues[number] = TrackingIssue(number=number, title=issue.title, state=state, body=issue.body)
        self.calls.append(("state", number, state))

    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] != "list"]


def computer(
    name: str,
    *,
    offline: bool = False,
    free: Optional[int] = None,
    total: Optional[int] = None,
    reason: str = "",
    idle: bool = True,
) -> Dict[str, Any]:
    monitors: Dict[str, Any] = {"hudson.node_monitors.ArchitectureMonitor": "Linux (amd64)"}
    if free is not None:
        disk: Dict[str, Any] = {"path": "/var/jenkins", "size": free}
        if total is not None:
            disk["totalSize"] = total
        monitors["hudson.node_monitors.DiskSpaceMonitor"] = disk
    return {
        "displayName": name,
        "offline": offline,
        "temporarilyOffline": False,
        "offlineCauseReason": reason,
        "idle": idle,
        "numExecutors": 2,
        "monitorData": monitors,
    }


@pytest.fixture
def make_tracker():
    return FakeTracker


@pytest.fixture
def make_computer():
    return computer
