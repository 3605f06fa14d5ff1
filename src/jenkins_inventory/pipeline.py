from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import RunConfig, validate_run_config
from .diff.diff import compute_diff, has_changes
from .github.issues import GitHubIssueTracker, IssueTracker
from .gitops import commit_changes, push_changes
from .inventory.schema import Inventory
from .inventory.store import load_inventory, persist_inventory
from .issues.lifecycle import IssueAction, IssueLifecycleController
from .jenkins.client import JenkinsCredentials, fetch_snapshot
from .jenkins.reconcile import ReconcileResult, reconcile
from .logging import get_logger
from .report import read_previous_report, render_report, segment_bounds, write_report
from .util.errors import SourceUnavailable, StepFailed
from .util.serialization import pretty_json_dumps

LOG = get_logger(__name__)


class StepOutcome(Enum):
    CONTINUE = "continue"
    STOP = "stop"


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    **extra: Any,
) -> None:
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(step)
        elif phase in {"complete", "error", "stopped"}:
            duration_ms = timers.finish(step)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


@dataclass
class Collaborators:
    """
    Side-effecting calls used by the run. Tests swap these for fakes.
    """

    fetch: Callable[..., Dict[str, Any]] = fetch_snapshot
    make_tracker: Optional[Callable[[RunConfig], IssueTracker]] = None
    commit: Callable[..., bool] = commit_changes
    push: Callable[..., None] = push_changes
    emit: Optional[Callable[[str], None]] = None

    def tracker_for(self, cfg: RunConfig) -> IssueTracker:
        if self.make_tracker is not None:
            return self.make_tracker(cfg)
        return GitHubIssueTracker(cfg.github_repository, cfg.github_token, timeout=cfg.http_timeout)


@dataclass
class RunContext:
    cfg: RunConfig
    collaborators: Collaborators = field(default_factory=Collaborators)
    previous: Inventory = field(default_factory=dict)
    previous_report: str = ""
    result: Optional[ReconcileResult] = None
    report_content: str = ""
    changed: bool = False
    controller: Optional[IssueLifecycleController] = None
    soft_failures: List[Exception] = field(default_factory=list)
    output: Optional[str] = None
    completed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    stopped_at: Optional[str] = None

    @property
    def inventory(self) -> Inventory:
        if self.result is None:
            raise RuntimeError("No inventory computed yet")
        return self.result.inventory

    @property
    def failed(self) -> bool:
        return bool(self.soft_failures)

    @property
    def issue_actions(self) -> List[IssueAction]:
        return list(self.controller.applied) if self.controller else []


StepFunc = Callable[[RunContext], Optional[StepOutcome]]


@dataclass(frozen=True)
class Step:
    name: str
    run: StepFunc
    when: Callable[[RunContext], bool] = lambda ctx: True


class Pipeline:
    """
    Ordered list of named steps run one after another.

    A step returning STOP ends the run successfully; an exception aborts it
    and is re-raised as StepFailed naming the step. Side effects of steps
    that already completed are left as they are.
    """

    def __init__(self, steps: Sequence[Step]) -> None:
        self.steps = list(steps)

    def run(self, ctx: RunContext) -> RunContext:
        timers = _StepTimers()
        for step in self.steps:
            if not step.when(ctx):
                ctx.skipped.append(step.name)
                LOG.debug("Step skipped", extra={"step": step.name, "phase": "skipped"})
                continue
            _log_event(LOG, logging.INFO, "Step started", step=step.name, phase="start", timers=timers)
            try:
                outcome = step.run(ctx) or StepOutcome.CONTINUE
            except Exception as e:
                _log_event(
                    LOG, logging.ERROR, "Step failed", step=step.name, phase="error", timers=timers, error=str(e)
                )
                raise StepFailed(step.name, e) from e
            ctx.completed.append(step.name)
            if outcome is StepOutcome.STOP:
                ctx.stopped_at = step.name
                _log_event(LOG, logging.INFO, "Run stopped", step=step.name, phase="stopped", timers=timers)
                break
            _log_event(LOG, logging.INFO, "Step complete", step=step.name, phase="complete", timers=timers)
        return ctx


# ---------
# Run steps
# ---------


def step_preflight(ctx: RunContext) -> None:
    validate_run_config(ctx.cfg)


def step_load(ctx: RunContext) -> None:
    cfg = ctx.cfg
    assert cfg.database is not None
    ctx.previous = load_inventory(cfg.database)
    if cfg.report and cfg.report_tags_enabled:
        ctx.previous_report = read_previous_report(cfg.report)
        segment_bounds(ctx.previous_report, cfg.report_start_tag, cfg.report_end_tag)
    LOG.info("Previous inventory loaded", extra={"nodes": len(ctx.previous)})


def step_fetch(ctx: RunContext) -> None:
    cfg = ctx.cfg
    creds = JenkinsCredentials(cfg.jenkins_domain, cfg.jenkins_username, cfg.jenkins_token)
    snapshot = ctx.collaborators.fetch(creds, timeout=cfg.http_timeout)
    total = len(snapshot.get("computer") or [])
    LOG.info("Total machines in scope", extra={"machines": total})
    if not total:
        err = SourceUnavailable("There are no available machines in Jenkins!")
        ctx.soft_failures.append(err)
        LOG.error(str(err))
    ctx.result = reconcile(snapshot, ctx.previous, cfg.jenkins_domain, cfg.create_issues_for_new_offline_nodes)
    ctx.report_content = render_report(ctx.result.report_rows, cfg.jenkins_domain, cfg.report_tags_enabled)


def step_diff(ctx: RunContext) -> StepOutcome:
    ctx.changed = has_changes(ctx.previous, ctx.inventory)
    if not ctx.changed:
        LOG.info("No changes to database, skipping the rest of the process")
        return StepOutcome.STOP
    LOG.info("Database changed", extra={"diff": compute_diff(ctx.previous, ctx.inventory)["summary"]})
    return StepOutcome.CONTINUE


def step_persist(ctx: RunContext) -> None:
    cfg = ctx.cfg
    assert cfg.database is not None
    persist_inventory(cfg.database, ctx.inventory)
    if cfg.report:
        write_report(
            cfg.report,
            ctx.report_content,
            use_tags=cfg.report_tags_enabled,
            start_tag=cfg.report_start_tag,
            end_tag=cfg.report_end_tag,
            previous=ctx.previous_report,
        )


def step_commit(ctx: RunContext) -> None:
    cfg = ctx.cfg
    paths: List[Path] = [p for p in (cfg.database, cfg.report) if p is not None]
    ctx.collaborators.commit(paths, cfg.commit_message)


def step_push(ctx: RunContext) -> None:
    cfg = ctx.cfg
    ctx.collaborators.push(
        remote=cfg.git_remote,
        branch=cfg.git_branch,
        repository=cfg.github_repository or None,
        token=cfg.github_token or None,
        actor=cfg.github_actor or None,
    )


def step_list_issues(ctx: RunContext) -> None:
    cfg = ctx.cfg
    ctx.controller = IssueLifecycleController(
        ctx.collaborators.tracker_for(cfg),
        domain=cfg.jenkins_domain,
        labels=cfg.issue_labels,
        assignees=cfg.issue_assignees,
    )
    ctx.controller.load_open_issues(ctx.inventory)


def step_down_issues(ctx: RunContext) -> None:
    assert ctx.controller is not None and ctx.result is not None
    ctx.controller.open_down_issues(ctx.result.pending_issues)


def step_disk_alerts(ctx: RunContext) -> None:
    assert ctx.controller is not None
    assert ctx.result is not None
    ctx.controller.run_disk_pass(ctx.inventory, ctx.cfg.disk_alert_level, ctx.result.readings)


def step_auto_close(ctx: RunContext) -> None:
    assert ctx.controller is not None
    ctx.controller.run_recovery_pass(ctx.inventory)


def step_output(ctx: RunContext) -> None:
    text = pretty_json_dumps(ctx.inventory)
    ctx.output = text
    if ctx.collaborators.emit is not None:
        ctx.collaborators.emit(text)
    elif ctx.cfg.output is not None:
        ctx.cfg.output.parent.mkdir(parents=True, exist_ok=True)
        ctx.cfg.output.write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)


def build_run_pipeline() -> Pipeline:
    return Pipeline(
        [
            Step("preflight", step_preflight),
            Step("load", step_load),
            Step("fetch", step_fetch),
            Step("diff", step_diff),
            Step("persist", step_persist),
            Step("commit", step_commit, when=lambda ctx: ctx.cfg.auto_commit),
            Step("push", step_push, when=lambda ctx: ctx.cfg.auto_push),
            Step("list-issues", step_list_issues, when=lambda ctx: ctx.cfg.manages_issues),
            Step(
                "down-issues",
                step_down_issues,
                when=lambda ctx: ctx.cfg.generate_issue and bool(ctx.result and ctx.result.pending_issues),
            ),
            Step("disk-alerts", step_disk_alerts, when=lambda ctx: ctx.cfg.disk_alert_level > 0),
            Step("auto-close", step_auto_close, when=lambda ctx: ctx.cfg.auto_close_issue),
            Step("output", step_output),
        ]
    )


def run_once(cfg: RunConfig, collaborators: Optional[Collaborators] = None) -> RunContext:
    ctx = RunContext(cfg=cfg, collaborators=collaborators or Collaborators())
    return build_run_pipeline().run(ctx)
