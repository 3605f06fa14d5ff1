from __future__ import annotations

import json
from typing import Any

REDACTED_VALUE = "<redacted>"
SENSITIVE_KEY_SUBSTRINGS = (
    "password",
    "secret",
    "token",
)


def _is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return any(token in lowered for token in SENSITIVE_KEY_SUBSTRINGS)


def redact(value: Any) -> Any:
    """
    Return a copy of value with credential-looking fields replaced.
    Empty credentials stay empty so "not configured" is still visible.
    """
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if _is_sensitive_key(k) and v:
                out[k] = REDACTED_VALUE
            else:
                out[k] = redact(v)
        return out
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def stable_json_dumps(obj: Any) -> str:
    """
    Dump JSON with sort_keys=True and compact separators to ensure stable output.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def pretty_json_dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False) + "\n"
