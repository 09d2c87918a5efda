"""Command line entry point: merge profiles into an experiment database."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from cctmerge.common.console import DiagnosticReporter, configure_logging, get_console
from cctmerge.common.errors import DiagnosticError, PipelineFailure, classify_exception
from cctmerge.models import NormalizePolicy, ReadFlag, SummaryStat
from cctmerge.services.database import write_database
from cctmerge.services.pipeline import PipelineConfig, PipelineOrchestrator
from cctmerge.utils.catalog_logger import CatalogLogger

SUMMARY_CHOICES = {
    "none": (),
    "sum": (SummaryStat.SUM,),
    "stats": (
        SummaryStat.SUM,
        SummaryStat.MEAN,
        SummaryStat.STDDEV,
        SummaryStat.COEF_VAR,
        SummaryStat.MIN,
        SummaryStat.MAX,
    ),
}


class CommandLineParser(argparse.ArgumentParser):
    """Argument parser whose usage errors become one-line diagnostics."""

    def error(self, message: str):
        raise DiagnosticError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = CommandLineParser(
        prog="cctmerge",
        description="Merge call-path profiles into one calling context tree database",
    )
    parser.add_argument("profiles", nargs="+", help="Profile files or directories of profiles")
    parser.add_argument(
        "-S",
        "--structure",
        dest="structure_files",
        action="append",
        default=[],
        help="Static structure file to overlay (repeatable)",
    )
    parser.add_argument(
        "-I",
        "--include",
        dest="search_paths",
        action="append",
        default=[],
        help="Source search directory; append '/+' to search recursively (repeatable)",
    )
    parser.add_argument("-o", "--db", dest="db_dir", type=Path, default=None, help="Output database directory")
    parser.add_argument("--title", default=None, help="Database title (defaults to the profile name)")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Process more profiles than the configured sanity limit",
    )
    parser.add_argument(
        "-N",
        "--normalize",
        choices=[policy.value for policy in NormalizePolicy],
        default=NormalizePolicy.SAFE.value,
        help="Tree normalization after structure overlay",
    )
    parser.add_argument("--agent", default=None, help="Hide runtime frames of the named agent")
    parser.add_argument(
        "-M",
        "--metric",
        dest="summary",
        choices=sorted(SUMMARY_CHOICES),
        default="none",
        help="Summary metrics to derive across profiles",
    )
    parser.add_argument(
        "--incl-excl",
        action="store_true",
        help="Create both an inclusive and an exclusive metric per profile event",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show progress and summary tables")
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        profile_files=list(args.profiles),
        structure_files=list(args.structure_files),
        search_paths=list(args.search_paths),
        title=args.title,
        force=args.force,
        db_dir=args.db_dir,
        normalize_policy=NormalizePolicy(args.normalize),
        agent=args.agent,
        summary_stats=SUMMARY_CHOICES[args.summary],
        read_flags=ReadFlag.MAKE_INCL_EXCL if args.incl_excl else ReadFlag.NONE,
    )


def realmain(args: argparse.Namespace, reporter: DiagnosticReporter) -> Optional[PipelineFailure]:
    orchestrator = PipelineOrchestrator(config_from_args(args), reporter)
    if not args.verbose:
        result = orchestrator.run()
        return result.failure

    # verbose runs keep the profile around long enough to print it
    console = get_console("info")
    shown = {}

    def show_and_write(profile, database, title):
        write_database(profile, database, title)
        shown["catalog"] = CatalogLogger.catalog_table(profile.catalog)
        visible = profile.catalog.visible()
        if visible:
            shown["contexts"] = CatalogLogger.top_contexts_table(
                profile.cct, visible[0].metric_id, metric_name=visible[0].name
            )

    orchestrator.writer = show_and_write
    result = orchestrator.run()
    for renderable in shown.values():
        console.print(renderable)
    return result.failure


def main(argv: Optional[list[str]] = None) -> int:
    reporter = DiagnosticReporter()

    try:
        args = build_parser().parse_args(argv)
        # library warnings stay off the terminal unless asked for
        configure_logging("info" if args.verbose else "error")
        failure = realmain(args, reporter)
    except (SystemExit, GeneratorExit):
        raise
    except BaseException as exc:  # failures outside the pipeline itself
        failure = classify_exception(exc)

    if failure is not None:
        reporter.error(failure.message)
        return failure.exit_status
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
