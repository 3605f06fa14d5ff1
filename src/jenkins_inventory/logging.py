from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

# Extras worth showing in plain output, in this order.
_PLAIN_CONTEXT_FIELDS = ("node", "alert", "issue", "machines", "failed_step", "error")

_TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    json_logs: bool = False


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        k: v
        for k, v in record.__dict__.items()
        if k not in _STANDARD_RECORD_ATTRS and not k.startswith("_") and v is not None
    }


def _json_value(value: Any) -> Any:
    """Return value if json can encode it as-is, else None."""
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return None
    return value


def _utc_stamp(record: logging.LogRecord, timespec: str) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec=timespec)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; extras that json cannot encode are dropped."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": _utc_stamp(record, "milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in _record_extras(record).items():
            encoded = _json_value(value)
            if encoded is not None:
                payload[key] = encoded
        return json.dumps(payload, sort_keys=True)


class PlainFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        extras = _record_extras(record)
        message = record.getMessage()
        step = extras.get("step")
        if step:
            message = f"[{step}:{extras.get('phase') or '-'}] {message}"
        context = " ".join(f"{k}={extras[k]}" for k in _PLAIN_CONTEXT_FIELDS if k in extras)
        if context:
            message = f"{message} {context}"
        if "duration_ms" in extras:
            message = f"{message} (duration_ms={extras['duration_ms']})"
        line = f"{_utc_stamp(record, 'seconds')} {record.levelname} {record.name}: {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_from_str(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(config: Optional[LogConfig] = None, *, force: bool = False) -> None:
    """
    Configure the root logger once; later calls are no-ops unless force=True.

    Output goes to stderr because stdout may carry the inventory JSON.
    Env overrides:
      - JENKINS_INV_LOG_LEVEL (default INFO)
      - JENKINS_INV_JSON_LOGS (1/true/yes/on to enable)
    """
    if getattr(setup_logging, "_configured", False) and not force:
        return

    cfg = config or LogConfig(level="")
    level = _level_from_str(cfg.level or os.getenv("JENKINS_INV_LOG_LEVEL") or "INFO")
    json_logs = cfg.json_logs or (os.getenv("JENKINS_INV_JSON_LOGS") or "").strip().lower() in _TRUTHY

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(JsonFormatter() if json_logs else PlainFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    setattr(setup_logging, "_configured", True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
