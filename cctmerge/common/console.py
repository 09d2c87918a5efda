"""Helpers for constructing Rich consoles and the diagnostic channel."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .settings import get_log_verbosity

_SILENT_KWARGS = {
    "quiet": True,
    "highlight": False,
    "markup": False,
    "emoji": False,
    "color_system": None,
    "soft_wrap": True,
}

_VERBOSE_KWARGS = {"soft_wrap": True}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "quiet": logging.CRITICAL,
}


def get_console(level: Optional[str] = None, **kwargs: Any) -> Console:
    """Return a Rich ``Console`` configured for the requested verbosity.

    The console respects ``CCTMERGE_LOG_VERBOSITY`` so batch runs can turn off
    rich rendering when the verbosity is ``warning``/``error``/``quiet``.

    Args:
        level: Optional verbosity override (``debug``/``info``/... ). When not
            provided the value returned by :func:`get_log_verbosity` is used.
        **kwargs: Additional keyword arguments forwarded to ``Console``.
    """

    verbosity = (level or get_log_verbosity()).lower()
    base_kwargs = _VERBOSE_KWARGS if verbosity in {"debug", "info"} else _SILENT_KWARGS
    config = {**base_kwargs, **kwargs}
    return Console(**config)


def configure_logging(level: Optional[str] = None) -> None:
    """Route the ``cctmerge`` loggers through a ``RichHandler`` on stderr."""

    verbosity = (level or get_log_verbosity()).lower()
    handler = RichHandler(
        console=Console(file=sys.stderr, soft_wrap=True),
        show_path=False,
        rich_tracebacks=False,
    )
    root = logging.getLogger("cctmerge")
    root.handlers[:] = [handler]
    root.setLevel(_LEVELS.get(verbosity, logging.WARNING))
    root.propagate = False


class DiagnosticReporter:
    """Process-lifetime channel for user-facing diagnostics.

    The reporter is created once by the entry point and handed to the pipeline,
    which reports progress notes and, on failure, exactly one error line.
    """

    def __init__(self, console: Optional[Console] = None, program: str = "cctmerge"):
        self.console = console or Console(stderr=True, soft_wrap=True)
        self.program = program
        self.errors: list[str] = []

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.console.print(f"[bold red]{self.program}: fatal error:[/bold red] {escape(message)}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]{self.program}: warning:[/yellow] {escape(message)}")

    def note(self, message: str) -> None:
        self.console.print(f"[dim]{self.program}:[/dim] {escape(message)}")


__all__ = ["get_console", "configure_logging", "DiagnosticReporter"]
