"""Persist a finalized profile as an experiment database directory.

The database holds ``experiment.json`` (title, metric catalog, tree shape,
static structure and trace-id map) and ``metrics.csv`` (one row per CCT node
in dense id order, one column per metric).
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from cctmerge.common.errors import DiagnosticError
from cctmerge.common.settings import get_database_prefix
from cctmerge.models import MetricDescriptor, Profile, StructureTree

logger = logging.getLogger(__name__)

EXPERIMENT_FILE = "experiment.json"
METRICS_FILE = "metrics.csv"


def default_database_name(profile_name: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9_.-]+", "_", profile_name).strip("_") or "profile"
    return f"{get_database_prefix()}-{slug}-database"


def make_database_dir(db_dir: Optional[Path], profile_name: str) -> Path:
    """Create the database directory and return it.

    Without an explicit ``db_dir`` the name is derived from the profile; an
    existing directory of that name gets a ``-<pid>`` suffix instead of being
    reused.
    """
    if db_dir is not None:
        path = Path(db_dir)
        if path.exists() and any(path.iterdir()):
            raise DiagnosticError(f"Database directory '{path}' already exists and is not empty")
    else:
        path = Path(default_database_name(profile_name))
        if path.exists():
            path = path.with_name(f"{path.name}-{os.getpid()}")
        if path.exists():
            raise DiagnosticError(f"Cannot create database directory '{path}': it already exists")

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DiagnosticError(f"Cannot create database directory '{path}': {exc.strerror}") from exc
    return path


def _metric_entry(descriptor: MetricDescriptor) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "id": descriptor.metric_id,
        "name": descriptor.name,
        "base_name": descriptor.base_name,
        "kind": descriptor.kind.value,
        "visible": descriptor.is_visible,
        "computed": descriptor.is_computed,
        "period": descriptor.period,
    }
    if descriptor.unit is not None:
        entry["unit"] = descriptor.unit
    if descriptor.formula is not None:
        entry["formula"] = descriptor.formula.describe()
    if descriptor.db_info is not None:
        entry["db_id"] = descriptor.db_info.db_id
        entry["db_num_metrics"] = descriptor.db_info.db_num_metrics
    return entry


def _structure_entries(structure: Optional[StructureTree]) -> List[Dict[str, Any]]:
    if structure is None:
        return []
    return [
        {
            "id": node.index,
            "parent": node.parent,
            "kind": node.kind.value,
            "name": node.name,
            "lines": [node.begin_line, node.end_line] if node.begin_line is not None else None,
            "path": node.path,
        }
        for node in structure.nodes
    ]


def experiment_document(profile: Profile, title: str) -> Dict[str, Any]:
    if not profile.cct.ids_assigned:
        raise DiagnosticError("Cannot write a database before dense node ids are assigned")
    return {
        "title": title,
        "name": profile.name,
        "source_profiles": profile.source_paths,
        "metrics": [_metric_entry(descriptor) for descriptor in profile.catalog],
        "cct": [
            {
                "id": node.index,
                "parent": node.parent,
                "kind": node.kind.value,
                "name": node.name,
                "file": node.file,
                "line": node.line,
                "structure_id": node.structure_id,
                "children": list(node.children),
            }
            for node in profile.cct.preorder()
        ],
        "structure": _structure_entries(profile.structure),
        "trace_ids": profile.trace_id_map(),
    }


def metric_frame(profile: Profile) -> pd.DataFrame:
    """Node-by-metric table, indexed by dense node id."""
    nodes = list(profile.cct.preorder())
    columns = [descriptor.name for descriptor in profile.catalog]
    frame = pd.DataFrame(
        np.vstack([node.values[: len(columns)] for node in nodes]),
        columns=columns,
        index=pd.Index([node.index for node in nodes], name="node_id"),
    )
    frame.insert(0, "name", [node.name for node in nodes], allow_duplicates=True)
    frame.insert(0, "kind", [node.kind.value for node in nodes], allow_duplicates=True)
    frame.insert(
        0,
        "parent_id",
        pd.array([node.parent for node in nodes], dtype="Int64"),
        allow_duplicates=True,
    )
    return frame


def write_database(profile: Profile, db_dir: Path, title: str) -> None:
    """Write the database files into ``db_dir``, which must already exist."""
    db_dir = Path(db_dir)
    if not db_dir.is_dir():
        raise DiagnosticError(f"Database directory '{db_dir}' does not exist")

    document = experiment_document(profile, title)
    with (db_dir / EXPERIMENT_FILE).open("w", encoding="utf-8") as fh:
        json.dump(document, fh, indent=2)
    metric_frame(profile).to_csv(db_dir / METRICS_FILE)

    logger.info(
        "Wrote database %s (%d nodes, %d metrics)",
        db_dir,
        len(document["cct"]),
        len(document["metrics"]),
    )


__all__ = [
    "EXPERIMENT_FILE",
    "METRICS_FILE",
    "default_database_name",
    "make_database_dir",
    "experiment_document",
    "metric_frame",
    "write_database",
]
