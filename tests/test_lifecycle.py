from __future__ import annotations

import pytest

from jenkins_inventory.github.issues import TrackingIssue
from jenkins_inventory.issues.lifecycle import (
    ACTION_CLOSE,
    ACTION_CREATE,
    IssueIndex,
    IssueLifecycleController,
    plan_disk_actions,
    plan_down_actions,
    plan_recovery_actions,
)
from jenkins_inventory.issues.templates import (
    ALERT_DISK,
    ALERT_OFFLINE,
    DISK_RECOVERY_COMMENT,
    OFFLINE_RECOVERY_COMMENT,
    correlation_marker,
)
from jenkins_inventory.jenkins.reconcile import PendingIssue
from jenkins_inventory.util.errors import TransportError

DOMAIN = "ci.example.org"


def _inv(**nodes) -> dict:
    return {k: dict({"name": k, "isOffline": False, "diskUsage": 10}, **v) for k, v in nodes.items()}


def _controller(tracker) -> IssueLifecycleController:
    return IssueLifecycleController(tracker, domain=DOMAIN, labels=["ops"], assignees=["alice"])


def test_disk_over_threshold_without_issue_creates_one(make_tracker) -> None:
    inventory = _inv(n1={"diskUsage": 95})
    tracker = make_tracker()
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)
    done = ctl.run_disk_pass(inventory, 80)

    assert [(a.kind, a.title) for a in done] == [(ACTION_CREATE, "n1 has low disk space")]
    assert tracker.mutations() == [("create", "n1 has low disk space", ["ops"], ["alice"])]


def test_disk_over_threshold_with_open_issue_does_nothing(make_tracker) -> None:
    inventory = _inv(n1={"diskUsage": 95})
    tracker = make_tracker([TrackingIssue(number=7, title="n1 has low disk space")])
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)

    assert ctl.run_disk_pass(inventory, 80) == []
    assert tracker.mutations() == []


def test_disk_recovered_comments_then_closes(make_tracker) -> None:
    inventory = _inv(n1={"diskUsage": 10})
    tracker = make_tracker([TrackingIssue(number=7, title="n1 has low disk space")])
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)
    ctl.run_disk_pass(inventory, 80)

    assert tracker.mutations() == [("comment", 7, DISK_RECOVERY_COMMENT), ("state", 7, "closed")]


@pytest.mark.parametrize("usage,expected", [(80, [ACTION_CREATE]), (79, [])])
def test_disk_threshold_boundary_without_issue(usage: int, expected) -> None:
    actions = plan_disk_actions(_inv(n1={"diskUsage": usage}), IssueIndex(), 80, DOMAIN)
    assert [a.kind for a in actions] == expected


@pytest.mark.parametrize("usage,expected", [(80, []), (79, [ACTION_CLOSE])])
def test_disk_threshold_boundary_with_issue(usage: int, expected) -> None:
    inventory = _inv(n1={"diskUsage": usage})
    index = IssueIndex.build([TrackingIssue(number=3, title="n1 has low disk space")], inventory)
    assert [a.kind for a in plan_disk_actions(inventory, index, 80, DOMAIN)] == expected


def test_disk_pass_disabled_and_unknown_usage() -> None:
    inventory = _inv(n1={"diskUsage": 99}, n2={"diskUsage": None})
    assert plan_disk_actions(inventory, IssueIndex(), 0, DOMAIN) == []
    assert [a.node_key for a in plan_disk_actions(inventory, IssueIndex(), 50, DOMAIN)] == ["n1"]


def test_recovery_closes_only_online_nodes_with_open_issue(make_tracker) -> None:
    inventory = _inv(up={}, down={"isOffline": True}, quiet={})
    tracker = make_tracker(
        [
            TrackingIssue(number=1, title="up is DOWN"),
            TrackingIssue(number=2, title="down is DOWN"),
            TrackingIssue(number=3, title="unrelated"),
        ]
    )
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)
    done = ctl.run_recovery_pass(inventory)

    assert [(a.node_key, a.issue_number) for a in done] == [("up", 1)]
    assert tracker.mutations() == [("comment", 1, OFFLINE_RECOVERY_COMMENT), ("state", 1, "closed")]


def test_recovery_ignores_issues_for_nodes_absent_from_inventory() -> None:
    index = IssueIndex.build([TrackingIssue(number=1, title="gone is DOWN")], {})
    assert plan_recovery_actions({}, index) == []


def test_failed_comment_prevents_close(make_tracker) -> None:
    inventory = _inv(up={})
    tracker = make_tracker([TrackingIssue(number=1, title="up is DOWN")], fail_on="comment_on_issue")
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)

    with pytest.raises(TransportError):
        ctl.run_recovery_pass(inventory)
    assert tracker.mutations() == []
    assert tracker.issues[1].state == "open"


def test_index_prefers_marker_over_title() -> None:
    inventory = _inv(n1={})
    renamed = TrackingIssue(number=4, title="old-name is DOWN", body=correlation_marker("n1", ALERT_OFFLINE))
    index = IssueIndex.build([renamed, TrackingIssue(number=9, title="n1 has low disk space")], inventory)

    assert index.get("n1", ALERT_OFFLINE).number == 4
    assert index.get("n1", ALERT_DISK).number == 9


def test_index_keeps_lowest_numbered_duplicate() -> None:
    inventory = _inv(n1={})
    index = IssueIndex.build(
        [TrackingIssue(number=12, title="n1 is DOWN"), TrackingIssue(number=5, title="n1 is DOWN")],
        inventory,
    )
    assert index.get("n1", ALERT_OFFLINE).number == 5
    assert len(index) == 1


def test_down_issues_skip_nodes_with_open_issue() -> None:
    inventory = _inv(a={"isOffline": True}, b={"isOffline": True})
    index = IssueIndex.build([TrackingIssue(number=1, title="a is DOWN")], inventory)
    pending = [
        PendingIssue("a", ALERT_OFFLINE, "a is DOWN", "body"),
        PendingIssue("b", ALERT_OFFLINE, "b is DOWN", "body"),
    ]
    assert [a.node_key for a in plan_down_actions(pending, index)] == ["b"]


def test_issue_created_in_run_is_visible_to_later_passes(make_tracker) -> None:
    inventory = _inv(n1={"diskUsage": 95})
    tracker = make_tracker()
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)
    ctl.run_disk_pass(inventory, 80)
    ctl.run_disk_pass(inventory, 80)

    assert [c[0] for c in tracker.mutations()] == ["create"]


def test_disk_and_offline_passes_are_independent(make_tracker) -> None:
    inventory = _inv(n1={"diskUsage": 95})
    tracker = make_tracker([TrackingIssue(number=1, title="n1 is DOWN")])
    ctl = _controller(tracker)
    ctl.load_open_issues(inventory)
    ctl.run_disk_pass(inventory, 80)
    ctl.run_recovery_pass(inventory)

    assert [c[0] for c in tracker.mutations()] == ["create", "comment", "state"]
    assert {a.alert for a in ctl.applied} == {ALERT_DISK, ALERT_OFFLINE}
