from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    TRANSPORT_ERROR = 4
    GIT_ERROR = 5
    INTEGRITY_ERROR = 6
    SOURCE_UNAVAILABLE = 7
    RUNTIME_ERROR = 8


class InventoryError(Exception):
    """Base error for the node inventory pipeline."""


class ConfigError(InventoryError):
    """Raised for configuration or argument issues. Raised before any I/O."""


class IntegrityError(InventoryError):
    """Raised when the persisted inventory does not have the expected shape."""


class SourceUnavailable(InventoryError):
    """Jenkins reported zero nodes. Recorded on the run, never raised past the pipeline."""


class TransportError(InventoryError):
    """Raised when a call to Jenkins or the issue tracker fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitError(InventoryError):
    """Raised when committing or pushing the updated files fails."""


class StepFailed(InventoryError):
    """Wraps a fatal error with the name of the pipeline step that raised it."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, StepFailed):
        return as_exit_code(exc.cause)
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, IntegrityError):
        return int(ExitCode.INTEGRITY_ERROR)
    if isinstance(exc, TransportError):
        return int(ExitCode.TRANSPORT_ERROR)
    if isinstance(exc, GitError):
        return int(ExitCode.GIT_ERROR)
    if isinstance(exc, SourceUnavailable):
        return int(ExitCode.SOURCE_UNAVAILABLE)
    if isinstance(exc, InventoryError):
        return int(ExitCode.RUNTIME_ERROR)
    return 1
