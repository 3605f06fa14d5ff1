from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, TypedDict


class NodeState(TypedDict, total=False):
    name: str
    displayName: str
    isOffline: bool
    isTemporarilyOffline: bool
    offlineReason: Optional[str]
    numExecutors: int
    architecture: Optional[str]
    diskUsage: Optional[int]


Inventory = Dict[str, NodeState]


@dataclass(frozen=True)
class NodeReading:
    """
    Values Jenkins reports on every poll that drift between runs (free bytes,
    busy/idle). They feed issue bodies but are never persisted, so they do
    not count as a change.
    """

    idle: bool = False
    free_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
