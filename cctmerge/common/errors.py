"""Fatal-failure taxonomy shared by the pipeline and the command line."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DiagnosticError(Exception):
    """A recognized configuration or validation failure with a readable message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FailureKind(Enum):
    DIAGNOSTIC = "diagnostic"
    RESOURCE = "resource"
    GENERIC = "generic"
    UNKNOWN = "unknown"


_EXIT_STATUS = {
    FailureKind.DIAGNOSTIC: 1,
    FailureKind.RESOURCE: 1,
    FailureKind.GENERIC: 1,
    FailureKind.UNKNOWN: 2,
}


@dataclass(frozen=True)
class PipelineFailure:
    """Tagged fatal outcome carried up to the entry point."""

    kind: FailureKind
    message: str

    @property
    def exit_status(self) -> int:
        return _EXIT_STATUS[self.kind]


def classify_exception(exc: BaseException) -> PipelineFailure:
    """Map an exception that escaped a pipeline stage onto a failure tag."""

    if isinstance(exc, DiagnosticError):
        return PipelineFailure(FailureKind.DIAGNOSTIC, exc.message)
    if isinstance(exc, MemoryError):
        return PipelineFailure(FailureKind.RESOURCE, f"[MemoryError] {exc}")
    if isinstance(exc, Exception):
        return PipelineFailure(FailureKind.GENERIC, f"[{type(exc).__name__}] {exc}")
    return PipelineFailure(FailureKind.UNKNOWN, "Unknown exception encountered!")


__all__ = [
    "DiagnosticError",
    "FailureKind",
    "PipelineFailure",
    "classify_exception",
]
