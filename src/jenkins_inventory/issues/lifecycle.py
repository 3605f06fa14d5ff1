from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..github.issues import IssueTracker, TrackingIssue
from ..inventory.schema import Inventory, NodeReading
from ..jenkins.reconcile import PendingIssue
from ..logging import get_logger
from .templates import (
    ALERT_DISK,
    ALERT_OFFLINE,
    DISK_RECOVERY_COMMENT,
    OFFLINE_RECOVERY_COMMENT,
    disk_title,
    offline_title,
    parse_correlation_marker,
    render_disk_alert_body,
)

LOG = get_logger(__name__)

ACTION_CREATE = "create"
ACTION_CLOSE = "close"

IssueKey = Tuple[str, str]


@dataclass(frozen=True)
class IssueAction:
    kind: str
    node_key: str
    alert: str
    title: str
    body: str = ""
    issue_number: Optional[int] = None


class IssueIndex:
    """
    Open tracking issues keyed by (node key, alert class).

    Issues opened by this tool carry a correlation marker in their body and are
    matched on it. Issues without a marker are matched by exact title against
    the current node names, so issues opened by hand with the right title count.
    """

    def __init__(self) -> None:
        self._by_key: Dict[IssueKey, TrackingIssue] = {}

    @classmethod
    def build(cls, issues: Iterable[TrackingIssue], inventory: Mapping[str, Mapping[str, object]]) -> "IssueIndex":
        index = cls()
        unmarked: List[TrackingIssue] = []
        for issue in issues:
            if issue.state != "open":
                continue
            marker = parse_correlation_marker(issue.body)
            if marker is None:
                unmarked.append(issue)
                continue
            index._put(marker, issue)

        titles: Dict[str, IssueKey] = {}
        for key, node in inventory.items():
            name = str(node.get("name") or key)
            titles.setdefault(offline_title(name), (key, ALERT_OFFLINE))
            titles.setdefault(disk_title(name), (key, ALERT_DISK))
        for issue in unmarked:
            issue_key = titles.get(issue.title)
            if issue_key is not None:
                index._put(issue_key, issue)
        return index

    def _put(self, key: IssueKey, issue: TrackingIssue) -> None:
        current = self._by_key.get(key)
        if current is not None and current.number != issue.number:
            # Keep the lowest-numbered issue.
            LOG.warning(
                "Duplicate open tracking issue",
                extra={"node": key[0], "alert": key[1], "kept": min(current.number, issue.number)},
            )
            if current.number < issue.number:
                return
        self._by_key[key] = issue

    def get(self, node_key: str, alert: str) -> Optional[TrackingIssue]:
        return self._by_key.get((node_key, alert))

    def add(self, node_key: str, alert: str, issue: TrackingIssue) -> None:
        self._by_key[(node_key, alert)] = issue

    def discard(self, node_key: str, alert: str) -> None:
        self._by_key.pop((node_key, alert), None)

    def __len__(self) -> int:
        return len(self._by_key)


def plan_down_actions(pending: Sequence[PendingIssue], index: IssueIndex) -> List[IssueAction]:
    actions: List[IssueAction] = []
    for item in pending:
        if index.get(item.node_key, item.alert) is not None:
            continue
        actions.append(
            IssueAction(kind=ACTION_CREATE, node_key=item.node_key, alert=item.alert, title=item.title, body=item.body)
        )
    return actions


def plan_disk_actions(
    inventory: Mapping[str, Mapping[str, object]],
    index: IssueIndex,
    threshold: int,
    domain: str,
    readings: Optional[Mapping[str, NodeReading]] = None,
) -> List[IssueAction]:
    """
    Disk alert pass. Usage equal to the threshold counts as over.
    Nodes without a disk reading are left alone either way; readings only add
    free/total sizes to new issue bodies.
    """
    actions: List[IssueAction] = []
    if threshold <= 0:
        return actions
    for key in sorted(inventory):
        node = inventory[key]
        usage = node.get("diskUsage")
        if not isinstance(usage, int) or isinstance(usage, bool):
            continue
        existing = index.get(key, ALERT_DISK)
        name = str(node.get("name") or key)
        if usage >= threshold and existing is None:
            actions.append(
                IssueAction(
                    kind=ACTION_CREATE,
                    node_key=key,
                    alert=ALERT_DISK,
                    title=disk_title(name),
                    body=render_disk_alert_body(key, node, domain, (readings or {}).get(key)),
                )
            )
        elif usage < threshold and existing is not None:
            actions.append(
                IssueAction(
                    kind=ACTION_CLOSE,
                    node_key=key,
                    alert=ALERT_DISK,
                    title=existing.title,
                    body=DISK_RECOVERY_COMMENT,
                    issue_number=existing.number,
                )
            )
    return actions


def plan_recovery_actions(inventory: Mapping[str, Mapping[str, object]], index: IssueIndex) -> List[IssueAction]:
    actions: List[IssueAction] = []
    for key in sorted(inventory):
        node = inventory[key]
        if node.get("isOffline"):
            LOG.debug("Machine is not online, skipping", extra={"node": key})
            continue
        existing = index.get(key, ALERT_OFFLINE)
        if existing is None:
            continue
        actions.append(
            IssueAction(
                kind=ACTION_CLOSE,
                node_key=key,
                alert=ALERT_OFFLINE,
                title=existing.title,
                body=OFFLINE_RECOVERY_COMMENT,
                issue_number=existing.number,
            )
        )
    return actions


def apply_actions(
    tracker: IssueTracker,
    actions: Sequence[IssueAction],
    index: IssueIndex,
    *,
    labels: Sequence[str] = (),
    assignees: Sequence[str] = (),
) -> List[IssueAction]:
    """
    Perform actions one at a time, in order. Closing posts the recovery comment
    first; if that raises, the issue is left open and the error propagates.
    """
    done: List[IssueAction] = []
    for action in actions:
        if action.kind == ACTION_CREATE:
            LOG.info("Generating issue", extra={"node": action.node_key, "alert": action.alert})
            issue = tracker.create_issue(action.title, action.body, labels, assignees)
            index.add(action.node_key, action.alert, issue)
        elif action.kind == ACTION_CLOSE:
            if action.issue_number is None:
                raise ValueError(f"Close action for {action.node_key} has no issue number")
            LOG.info(
                "Closing issue",
                extra={"node": action.node_key, "alert": action.alert, "issue": action.issue_number},
            )
            tracker.comment_on_issue(action.issue_number, action.body)
            tracker.set_issue_state(action.issue_number, "closed")
            index.discard(action.node_key, action.alert)
        else:
            raise ValueError(f"Unknown issue action: {action.kind}")
        done.append(action)
    return done


class IssueLifecycleController:
    """
    Runs the issue passes of one run against a single open-issues snapshot.
    """

    def __init__(
        self,
        tracker: IssueTracker,
        *,
        domain: str,
        labels: Sequence[str] = (),
        assignees: Sequence[str] = (),
    ) -> None:
        self.tracker = tracker
        self.domain = domain
        self.labels = list(labels)
        self.assignees = list(assignees)
        self.index = IssueIndex()
        self.applied: List[IssueAction] = []

    def load_open_issues(self, inventory: Inventory) -> int:
        issues = self.tracker.list_open_issues()
        self.index = IssueIndex.build(issues, inventory)
        LOG.info("Open issues listed", extra={"open_issues": len(issues), "tracked": len(self.index)})
        return len(issues)

    def _apply(self, actions: Sequence[IssueAction]) -> List[IssueAction]:
        done = apply_actions(self.tracker, actions, self.index, labels=self.labels, assignees=self.assignees)
        self.applied.extend(done)
        return done

    def open_down_issues(self, pending: Sequence[PendingIssue]) -> List[IssueAction]:
        return self._apply(plan_down_actions(pending, self.index))

    def run_disk_pass(
        self, inventory: Inventory, threshold: int, readings: Optional[Mapping[str, NodeReading]] = None
    ) -> List[IssueAction]:
        LOG.info("Checking disk alerts", extra={"threshold": threshold, "nodes": len(inventory)})
        return self._apply(plan_disk_actions(inventory, self.index, threshold, self.domain, readings))

    def run_recovery_pass(self, inventory: Inventory) -> List[IssueAction]:
        return self._apply(plan_recovery_actions(inventory, self.index))
