from .console import DiagnosticReporter, configure_logging, get_console
from .errors import DiagnosticError, FailureKind, PipelineFailure, classify_exception

__all__ = [
    "DiagnosticReporter",
    "configure_logging",
    "get_console",
    "DiagnosticError",
    "FailureKind",
    "PipelineFailure",
    "classify_exception",
]
