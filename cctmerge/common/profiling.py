"""Opt-in timing of pipeline stages.

Timing is enabled via the ``CCTMERGE_PROFILE`` environment variable. When it is
disabled :func:`profile_section` returns a ``nullcontext`` so the pipeline pays
nothing for it. When enabled each section logs its wall-clock and CPU time and
appends a record to :data:`STAGE_RECORDS`.
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import List, Optional

from .settings import stage_profiling_enabled

profile_logger = logging.getLogger(__name__)


@dataclass
class StageRecord:
    name: str
    wall_ms: float
    cpu_ms: float


STAGE_RECORDS: List[StageRecord] = []


class _ProfileSectionContext:
    def __init__(self, name: str):
        self._name = name
        self._start_wall: Optional[float] = None
        self._start_cpu: Optional[float] = None

    def __enter__(self):
        self._start_wall = time.perf_counter()
        self._start_cpu = time.process_time()
        return self

    def __exit__(self, exc_type, exc, tb):
        wall_ms = (time.perf_counter() - self._start_wall) * 1000.0
        cpu_ms = (time.process_time() - self._start_cpu) * 1000.0
        STAGE_RECORDS.append(StageRecord(self._name, wall_ms, cpu_ms))
        profile_logger.info(
            "stage %s: wall=%.2fms cpu=%.2fms%s",
            self._name,
            wall_ms,
            cpu_ms,
            " (failed)" if exc_type is not None else "",
        )
        return False


def profile_section(name: str):
    """Context manager timing an arbitrary block when stage profiling is on."""

    if not stage_profiling_enabled():
        return nullcontext()
    return _ProfileSectionContext(name)


__all__ = ["StageRecord", "STAGE_RECORDS", "profile_section"]
