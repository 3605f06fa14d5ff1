from __future__ import annotations

import sys
from typing import List, Optional

from .config import RunConfig, dump_config, load_run_config
from .diff.diff import diff_files, render_diff
from .inventory.store import load_inventory
from .logging import LogConfig, get_logger, setup_logging
from .pipeline import Collaborators, run_once
from .util.errors import ConfigError, ExitCode, StepFailed, as_exit_code
from .util.rich_summary import build_summary_table, print_summary

LOG = get_logger(__name__)


def cmd_run(cfg: RunConfig, collaborators: Optional[Collaborators] = None) -> int:
    LOG.debug("Run configuration", extra={"config": dump_config(cfg)})
    ctx = run_once(cfg, collaborators)

    show_summary = cfg.summary if cfg.summary is not None else sys.stderr.isatty()
    if show_summary and ctx.result is not None:
        print_summary(
            build_summary_table(
                ctx.inventory,
                changed=ctx.changed,
                failed=ctx.failed,
                actions=ctx.issue_actions,
                disk_alert_level=cfg.disk_alert_level,
            )
        )

    if ctx.failed:
        LOG.error("Run finished with failures", extra={"failures": [str(e) for e in ctx.soft_failures]})
        return int(ExitCode.SOURCE_UNAVAILABLE)
    if ctx.stopped_at is None:
        LOG.info("Process finished successfully! 🎉🎉🎉")
    return int(ExitCode.OK)


def cmd_diff(cfg: RunConfig) -> int:
    if not cfg.prev or not cfg.curr:
        raise ConfigError("Both --prev and --curr must be provided for diff")
    diff_obj = diff_files(cfg.prev, cfg.curr)
    print(render_diff(diff_obj))
    return int(ExitCode.OK)


def cmd_validate(cfg: RunConfig) -> int:
    if not cfg.database:
        raise ConfigError("--database must be provided for validate")
    if not cfg.database.exists():
        raise ConfigError(f"Database not found: {cfg.database}")
    inventory = load_inventory(cfg.database)
    print(f"OK: {cfg.database} holds {len(inventory)} nodes")
    return int(ExitCode.OK)


def main(argv: Optional[List[str]] = None) -> None:
    try:
        command, cfg = load_run_config(argv=argv)
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "diff":
            code = cmd_diff(cfg)
        elif command == "validate":
            code = cmd_validate(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())
        step = e.step if isinstance(e, StepFailed) else None
        LOG.error("Execution failed", extra={"error": str(e), "failed_step": step})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
