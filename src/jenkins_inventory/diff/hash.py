from __future__ import annotations

import hashlib
from typing import Any, Mapping

from ..util.serialization import stable_json_dumps


def stable_record_hash(record: Mapping[str, Any]) -> str:
    """
    SHA256 of a node record with sorted keys, so field order in the
    database file never shows up as a change.
    """
    payload = stable_json_dumps(dict(record))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
