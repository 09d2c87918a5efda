"""One-shot pipeline: profiles in, experiment database out.

Stages run strictly in order: normalize inputs, bound check, merge, structure
overlay, dense id assignment, optional summary-metric derivation, metric
bookkeeping, persistence. There is no partial success: a failure at any stage
leaves no database behind and is reported as a single tagged
:class:`PipelineFailure`.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from cctmerge.common.console import DiagnosticReporter
from cctmerge.common.errors import DiagnosticError, PipelineFailure, classify_exception
from cctmerge.common.profiling import profile_section
from cctmerge.common.settings import get_max_profiles
from cctmerge.models import (
    MergeFlag,
    MergePolicy,
    NormalizePolicy,
    Profile,
    ReadFlag,
    StructureTree,
    SummaryStat,
)

from .aggregator import CCTAggregator
from .classifier import classify_metrics, hide_source_metrics
from .database import EXPERIMENT_FILE, METRICS_FILE, make_database_dir, write_database
from .derivation import DerivedMetricEvaluator
from .profile_reader import normalize_profile_args, read_profiles
from .structure import SearchPathResolver, overlay_static_structure, read_structure

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Options for a single run; built by the command line or by callers."""

    profile_files: list[str]
    structure_files: list[str] = field(default_factory=list)
    search_paths: list[str] = field(default_factory=list)
    title: Optional[str] = None
    force: bool = False  # bypass the profile-count cap
    db_dir: Optional[Path] = None
    normalize_policy: NormalizePolicy = NormalizePolicy.SAFE
    agent: Optional[str] = None
    summary_stats: tuple[SummaryStat, ...] = ()  # empty disables derivation
    merge_policy: MergePolicy = MergePolicy.CREATE_METRIC
    read_flags: ReadFlag = ReadFlag.NONE
    merge_flags: MergeFlag = MergeFlag.NORMALIZE_TRACE_IDS
    max_profiles: Optional[int] = None  # None uses CCTMERGE_MAX_PROFILES


@dataclass
class PipelineResult:
    database: Optional[Path] = None
    failure: Optional[PipelineFailure] = None
    title: Optional[str] = None
    num_nodes: int = 0
    num_metrics: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None


def check_profile_count(count: int, limit: int, force: bool) -> None:
    if count == 0:
        raise DiagnosticError("There are no profile files to process")
    if count > limit and not force:
        raise DiagnosticError(
            f"There are {count} profile files to process. As a sanity check, cctmerge "
            f"limits the number of profile files it processes to {limit}. Use the --force "
            f"option to remove this limit or use a distributed merge tool."
        )


def make_metrics(profile: Profile, stats: Sequence[SummaryStat]) -> Optional[int]:
    """Aggregate source metrics and derive summary metrics over them.

    Returns the first derived metric id, or ``None`` if no summary metric was
    created.
    """
    catalog = profile.catalog
    cct = profile.cct

    src_begin, src_end = 0, catalog.num_source
    drvd_begin = catalog.make_summary_metrics(src_begin, src_end, stats)
    cct.ensure_width(len(catalog))

    hide_source_metrics(catalog, src_begin, src_end)
    classification = classify_metrics(catalog, src_begin, src_end)
    CCTAggregator(cct).aggregate(classification)

    if drvd_begin is not None:
        DerivedMetricEvaluator(catalog).evaluate(cct, drvd_begin, len(catalog))
    return drvd_begin


def finalize_metric_db_info(profile: Profile) -> None:
    """Drop per-thread metric database info; this pipeline writes none."""
    for descriptor in profile.catalog:
        if descriptor.has_db_info():
            descriptor.zero_db_info()


class PipelineOrchestrator:
    def __init__(
        self,
        config: PipelineConfig,
        reporter: Optional[DiagnosticReporter] = None,
        writer: Callable[[Profile, Path, str], None] = write_database,
    ):
        self.config = config
        self.reporter = reporter or DiagnosticReporter()
        self.writer = writer

    def run(self) -> PipelineResult:
        """Run every stage; never raises for a pipeline failure."""
        try:
            return self._run_stages()
        except (SystemExit, GeneratorExit):
            raise
        except BaseException as exc:
            failure = classify_exception(exc)
            logger.debug("Pipeline failed: %s", failure.message, exc_info=True)
            return PipelineResult(failure=failure)

    def build_profile(self) -> Profile:
        """Normalize, merge, overlay and finalize node ids."""
        config = self.config

        with profile_section("pipeline.normalize"):
            nargs = normalize_profile_args(config.profile_files)
        limit = config.max_profiles if config.max_profiles is not None else get_max_profiles()
        check_profile_count(len(nargs.paths), limit, config.force)

        group_map = nargs.group_map if nargs.group_max > 1 else None
        with profile_section("pipeline.merge"):
            profile = read_profiles(
                nargs.paths,
                group_map,
                config.merge_policy,
                config.read_flags,
                config.merge_flags,
            )
        logger.info(
            "Merged %d profiles into %d metrics",
            len(nargs.paths),
            len(profile.catalog),
        )

        with profile_section("pipeline.overlay"):
            structure = StructureTree("")
            if config.structure_files:
                resolver = SearchPathResolver(config.search_paths)
                read_structure(config.structure_files, resolver, structure)
            profile.structure = structure
            overlay_static_structure(profile, config.agent, config.normalize_policy)

        profile.cct.make_dense_preorder_ids()
        return profile

    def _run_stages(self) -> PipelineResult:
        config = self.config
        profile = self.build_profile()

        if config.summary_stats:
            with profile_section("pipeline.metrics"):
                make_metrics(profile, config.summary_stats)

        finalize_metric_db_info(profile)
        title = config.title or profile.name

        with profile_section("pipeline.database"):
            database = self._persist(profile, title)

        result = PipelineResult(
            database=database,
            title=title,
            num_nodes=len(profile.cct),
            num_metrics=len(profile.catalog),
        )
        del profile
        return result

    def _persist(self, profile: Profile, title: str) -> Path:
        requested = self.config.db_dir
        existed = requested is not None and Path(requested).exists()
        database = make_database_dir(requested, profile.name)
        try:
            self.writer(profile, database, title)
        except BaseException:
            self._discard(database, created=not existed)
            raise
        self.reporter.note(f"wrote database '{database}'")
        return database

    @staticmethod
    def _discard(database: Path, created: bool) -> None:
        if created:
            shutil.rmtree(database, ignore_errors=True)
            return
        for name in (EXPERIMENT_FILE, METRICS_FILE):
            (database / name).unlink(missing_ok=True)


def run_pipeline(
    config: PipelineConfig, reporter: Optional[DiagnosticReporter] = None
) -> PipelineResult:
    return PipelineOrchestrator(config, reporter).run()


__all__ = [
    "PipelineConfig",
    "PipelineResult",
    "PipelineOrchestrator",
    "check_profile_count",
    "make_metrics",
    "finalize_metric_db_info",
    "run_pipeline",
]
