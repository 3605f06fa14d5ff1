from __future__ import annotations

import argparse
import json
import os
import re
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .report import DEFAULT_END_TAG, DEFAULT_START_TAG
from .util.errors import ConfigError
from .util.serialization import redact

# --------
# Defaults
# --------
DEFAULT_COMMIT_MESSAGE = "Updated Jenkins Status"
DEFAULT_GIT_REMOTE = "origin"
DEFAULT_HTTP_TIMEOUT = 30.0
ENV_PREFIX = "JENKINS_INV_"

BOOL_CONFIG_KEYS = {
    "report_tags_enabled",
    "create_issues_for_new_offline_nodes",
    "generate_issue",
    "auto_commit",
    "auto_push",
    "auto_close_issue",
    "json_logs",
    "summary",
}
LIST_CONFIG_KEYS = {"issue_assignees", "issue_labels"}
PATH_CONFIG_KEYS = {"database", "report", "output", "prev", "curr"}
STR_CONFIG_KEYS = {
    "jenkins_domain",
    "jenkins_username",
    "jenkins_token",
    "github_token",
    "github_repository",
    "github_actor",
    "report_start_tag",
    "report_end_tag",
    "commit_message",
    "git_remote",
    "git_branch",
    "log_level",
}
ALLOWED_CONFIG_KEYS = (
    BOOL_CONFIG_KEYS | LIST_CONFIG_KEYS | PATH_CONFIG_KEYS | STR_CONFIG_KEYS | {"disk_alert_level", "http_timeout"}
)

# Environment fallbacks provided by GitHub Actions runners.
GITHUB_ENV_FALLBACKS = {
    "github_token": "GITHUB_TOKEN",
    "github_repository": "GITHUB_REPOSITORY",
    "github_actor": "GITHUB_ACTOR",
    "git_branch": "GITHUB_HEAD_REF",
}


@dataclass(frozen=True)
class RunConfig:
    # State
    database: Optional[Path] = None
    output: Optional[Path] = None

    # Jenkins
    jenkins_domain: str = ""
    jenkins_username: str = ""
    jenkins_token: str = ""

    # GitHub
    github_token: str = ""
    github_repository: str = ""
    github_actor: str = ""

    # Report
    report: Optional[Path] = None
    report_tags_enabled: bool = False
    report_start_tag: str = DEFAULT_START_TAG
    report_end_tag: str = DEFAULT_END_TAG

    # Issues
    create_issues_for_new_offline_nodes: bool = False
    generate_issue: bool = False
    auto_close_issue: bool = False
    disk_alert_level: int = 0
    issue_assignees: Tuple[str, ...] = ()
    issue_labels: Tuple[str, ...] = ()

    # Git
    auto_commit: bool = False
    auto_push: bool = False
    commit_message: str = DEFAULT_COMMIT_MESSAGE
    git_remote: str = DEFAULT_GIT_REMOTE
    git_branch: Optional[str] = None

    # diff subcommand
    prev: Optional[Path] = None
    curr: Optional[Path] = None

    # Runtime
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = "INFO"
    json_logs: bool = False
    summary: Optional[bool] = None

    @property
    def manages_issues(self) -> bool:
        return self.generate_issue or self.auto_close_issue or self.disk_alert_level > 0

    @property
    def needs_github_token(self) -> bool:
        return any([self.auto_push, self.auto_commit, self.generate_issue, self.auto_close_issue, self.disk_alert_level])


def parse_alert_level(value: Any) -> int:
    """
    Lenient integer parse: leading digits win ("80%" -> 80), anything else is 0 (disabled).
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(value, 0)
    m = re.match(r"\s*(\d+)", str(value))
    return int(m.group(1)) if m else 0


def split_csv(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        raise ValueError("List fields must be a list of strings or a comma-separated string")
    return tuple(x.strip() for x in items if x.strip())


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    # Accept action-style keys (auto-commit) as well as snake_case.
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = _env_str(name)
    if raw is None:
        return None
    return raw.lower() in {"1", "true", "yes", "on"}


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off", ""}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Config field '{key}' must be a number")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config field '{key}' must be a number") from None
    if result <= 0:
        raise ValueError(f"Config field '{key}' must be positive")
    return result


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS or value is None:
            continue
        if key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in LIST_CONFIG_KEYS:
            normalized[key] = split_csv(value)
        elif key == "disk_alert_level":
            normalized[key] = parse_alert_level(value)
        elif key == "http_timeout":
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if not isinstance(value, (str, Path)):
                raise ValueError(f"Config field '{key}' must be a string path")
            normalized[key] = value
        elif isinstance(value, str):
            normalized[key] = value
        else:
            raise ValueError(f"Config field '{key}' must be a string")
    return normalized


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _env_config() -> Dict[str, Any]:
    env: Dict[str, Any] = {}
    for key in ALLOWED_CONFIG_KEYS:
        name = ENV_PREFIX + key.upper()
        if key in BOOL_CONFIG_KEYS:
            env[key] = _env_bool(name)
        else:
            env[key] = _env_str(name)
    for key, name in GITHUB_ENV_FALLBACKS.items():
        if env.get(key) is None:
            env[key] = _env_str(name)
    return _compact_dict(env)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jenkins-inv", description="Jenkins node inventory and alerting")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")

    def flag(p: argparse.ArgumentParser, name: str, help_text: str) -> None:
        p.add_argument(name, action=argparse.BooleanOptionalAction, default=None, help=help_text)

    p_run = subparsers.add_parser("run", help="Refresh the inventory, report and issues")
    add_common(p_run)
    p_run.add_argument("--database", type=Path, default=None, help="Path of the JSON node database")
    p_run.add_argument("--jenkins-domain", default=None, help="Jenkins host, e.g. ci.example.org")
    p_run.add_argument("--jenkins-username", default=None)
    p_run.add_argument("--jenkins-token", default=None, help="Jenkins API token (prefer the env var)")
    p_run.add_argument("--github-token", default=None, help="GitHub token (prefer GITHUB_TOKEN)")
    p_run.add_argument("--github-repository", default=None, help="owner/name of the issue repository")
    p_run.add_argument("--report", type=Path, default=None, help="Markdown report path")
    flag(p_run, "--report-tags-enabled", "Only replace the tagged segment of the report")
    p_run.add_argument("--report-start-tag", default=None)
    p_run.add_argument("--report-end-tag", default=None)
    flag(p_run, "--create-issues-for-new-offline-nodes", "Open DOWN issues for unknown nodes seen offline")
    flag(p_run, "--generate-issue", "Open DOWN issues for nodes that went offline")
    flag(p_run, "--auto-commit", "Commit the database and report")
    flag(p_run, "--auto-push", "Push after committing")
    flag(p_run, "--auto-close-issue", "Close DOWN issues for nodes back online")
    p_run.add_argument("--disk-alert-level", default=None, help="Disk usage percent that opens an issue (0 disables)")
    p_run.add_argument("--issue-assignees", default=None, help="Comma-separated GitHub logins")
    p_run.add_argument("--issue-labels", default=None, help="Comma-separated labels")
    p_run.add_argument("--commit-message", default=None)
    p_run.add_argument("--git-remote", default=None)
    p_run.add_argument("--git-branch", default=None, help="Branch to push to (default: current)")
    p_run.add_argument("--output", type=Path, default=None, help="Write the final inventory JSON here")
    p_run.add_argument("--http-timeout", type=float, default=None, help="Seconds per HTTP call")
    flag(p_run, "--summary", "Print a summary table to stderr")

    p_diff = subparsers.add_parser("diff", help="Diff two node database files")
    add_common(p_diff)
    p_diff.add_argument("--prev", type=Path, required=False, help="Previous database JSON")
    p_diff.add_argument("--curr", type=Path, required=False, help="Current database JSON")

    p_val = subparsers.add_parser("validate", help="Check a node database for integrity")
    add_common(p_val)
    p_val.add_argument("--database", type=Path, default=None, help="Path of the JSON node database")

    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[List[str]] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is run|diff|validate
    """
    ns = args if args is not None else build_parser().parse_args(argv)
    command = ns.command

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    env_cfg = _normalize_config_file(_env_config())

    cli_raw = {key: getattr(ns, key, None) for key in ALLOWED_CONFIG_KEYS}
    cli_cfg = _normalize_config_file(_compact_dict(cli_raw))

    merged: Dict[str, Any] = {}
    for layer in (file_cfg, env_cfg, cli_cfg):
        merged.update(layer)

    def _path(key: str) -> Optional[Path]:
        value = merged.get(key)
        return Path(value) if value else None

    cfg = RunConfig(
        database=_path("database"),
        output=_path("output"),
        jenkins_domain=str(merged.get("jenkins_domain") or ""),
        jenkins_username=str(merged.get("jenkins_username") or ""),
        jenkins_token=str(merged.get("jenkins_token") or ""),
        github_token=str(merged.get("github_token") or ""),
        github_repository=str(merged.get("github_repository") or ""),
        github_actor=str(merged.get("github_actor") or ""),
        report=_path("report"),
        report_tags_enabled=bool(merged.get("report_tags_enabled", False)),
        report_start_tag=str(merged.get("report_start_tag") or DEFAULT_START_TAG),
        report_end_tag=str(merged.get("report_end_tag") or DEFAULT_END_TAG),
        create_issues_for_new_offline_nodes=bool(merged.get("create_issues_for_new_offline_nodes", False)),
        generate_issue=bool(merged.get("generate_issue", False)),
        auto_close_issue=bool(merged.get("auto_close_issue", False)),
        disk_alert_level=int(merged.get("disk_alert_level") or 0),
        issue_assignees=tuple(merged.get("issue_assignees") or ()),
        issue_labels=tuple(merged.get("issue_labels") or ()),
        auto_commit=bool(merged.get("auto_commit", False)),
        auto_push=bool(merged.get("auto_push", False)),
        commit_message=str(merged.get("commit_message") or DEFAULT_COMMIT_MESSAGE),
        git_remote=str(merged.get("git_remote") or DEFAULT_GIT_REMOTE),
        git_branch=str(merged["git_branch"]) if merged.get("git_branch") else None,
        prev=_path("prev"),
        curr=_path("curr"),
        http_timeout=float(merged.get("http_timeout") or DEFAULT_HTTP_TIMEOUT),
        log_level=str(merged.get("log_level") or "INFO").upper(),
        json_logs=bool(merged.get("json_logs", False)),
        summary=merged.get("summary"),
    )
    return command, cfg


def validate_run_config(cfg: RunConfig) -> None:
    """
    Pre-flight checks for the run command. Raises ConfigError before any I/O.
    """
    missing = [
        flag
        for flag, value in (
            ("--database", cfg.database),
            ("--jenkins-domain", cfg.jenkins_domain),
            ("--jenkins-username", cfg.jenkins_username),
            ("--jenkins-token", cfg.jenkins_token),
        )
        if not value
    ]
    if missing:
        raise ConfigError(f"Missing required options: {', '.join(missing)}")
    if not cfg.github_token and cfg.needs_github_token:
        raise ConfigError("Github token is required for push, commit and create an issue operations!")
    if cfg.manages_issues and not cfg.github_repository:
        raise ConfigError("--github-repository (owner/name) is required to manage issues")
    if cfg.report_tags_enabled and cfg.report_start_tag == cfg.report_end_tag:
        raise ConfigError("Report start and end tags must differ")


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    data = asdict(cfg)
    for key, value in data.items():
        if isinstance(value, Path):
            data[key] = str(value)
        elif isinstance(value, tuple):
            data[key] = list(value)
    return redact(data)
