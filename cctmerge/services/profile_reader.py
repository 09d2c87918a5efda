"""Read JSON profile documents and merge them into one :class:`Profile`.

A profile document looks like::

    {
      "name": "lulesh",
      "metrics": [{"name": "CYCLES", "kind": "inclusive", "period": 1000}],
      "cct": {
        "kind": "root", "name": "<program root>", "values": [],
        "children": [
          {"kind": "frame", "name": "main", "file": "main.c", "line": 10,
           "values": [4], "children": []}
        ]
      }
    }

``values`` at a node are the samples attributed directly to that node, one
entry per metric of the document; missing entries and ``null`` count as zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, model_validator

from cctmerge.common.errors import DiagnosticError
from cctmerge.models import (
    CallingContextTree,
    MergeFlag,
    MergePolicy,
    MetricDBInfo,
    MetricDescriptor,
    MetricKind,
    NodeKind,
    Profile,
    ReadFlag,
)

from .metric_catalog import MetricCatalog

logger = logging.getLogger(__name__)

PROFILE_SUFFIX = ".json"


# MARK: - Document models


class MetricDocument(BaseModel):
    name: str
    kind: Literal["inclusive", "exclusive"] = "inclusive"
    unit: Optional[str] = None
    period: float = 1.0
    db_id: Optional[int] = None
    db_num_metrics: Optional[int] = None


class NodeDocument(BaseModel):
    kind: Literal["root", "frame", "call_site", "loop", "statement"] = "frame"
    name: str = ""
    file: Optional[str] = None
    line: Optional[int] = None
    trace_id: Optional[int] = None
    values: list[Optional[float]] = Field(default_factory=list)
    children: list["NodeDocument"] = Field(default_factory=list)


NodeDocument.model_rebuild()


class ProfileDocument(BaseModel):
    name: str
    metrics: list[MetricDocument] = Field(default_factory=list)
    cct: NodeDocument

    @model_validator(mode="after")
    def _check_value_widths(self) -> "ProfileDocument":
        width = len(self.metrics)
        stack = [self.cct]
        while stack:
            node = stack.pop()
            if len(node.values) > width:
                raise ValueError(
                    f"node '{node.name}' has {len(node.values)} values but only {width} metrics"
                )
            stack.extend(node.children)
        return self


def load_profile_document(path: Path) -> ProfileDocument:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise DiagnosticError(f"Cannot read profile file '{path}': {exc.strerror}") from exc
    try:
        return ProfileDocument.model_validate_json(text)
    except ValidationError as exc:
        raise DiagnosticError(f"Malformed profile file '{path}': {exc}") from exc


# MARK: - Normalization


@dataclass
class NormalizedProfileArgs:
    paths: list[str]
    group_map: list[int]  # group index per entry of ``paths``
    group_max: int


def normalize_profile_args(profile_files: Sequence[str]) -> NormalizedProfileArgs:
    """Expand and deduplicate profile arguments.

    A file argument forms its own group; a directory argument contributes
    every ``*.json`` file it contains, in sorted order, as one group.
    """
    paths: list[str] = []
    group_map: list[int] = []
    seen: set[Path] = set()
    group = 0

    for arg in profile_files:
        candidate = Path(arg)
        if candidate.is_dir():
            members = sorted(p for p in candidate.glob(f"*{PROFILE_SUFFIX}") if p.is_file())
            if not members:
                logger.info("No profile files found in directory '%s'", arg)
                continue
        elif candidate.is_file():
            members = [candidate]
        else:
            raise DiagnosticError(f"Cannot find profile file or directory '{arg}'")

        added = False
        for member in members:
            resolved = member.resolve()
            if resolved in seen:
                logger.info("Ignoring duplicate profile '%s'", member)
                continue
            seen.add(resolved)
            paths.append(str(member))
            group_map.append(group)
            added = True
        if added:
            group += 1

    return NormalizedProfileArgs(paths=paths, group_map=group_map, group_max=group)


# MARK: - Merge


class _ProfileMerger:
    def __init__(
        self,
        group_map: Optional[Sequence[int]],
        merge_policy: MergePolicy,
        read_flags: ReadFlag,
        merge_flags: MergeFlag,
    ):
        self.group_map = group_map
        self.merge_policy = merge_policy
        self.read_flags = read_flags
        self.merge_flags = merge_flags
        self.catalog = MetricCatalog()
        self.cct = CallingContextTree()
        self._columns: dict[tuple, int] = {}

    def merge(self, input_index: int, path: str, document: ProfileDocument) -> None:
        columns = self._columns_for(input_index, path, document)
        self.cct.ensure_width(len(self.catalog))

        stack = [(document.cct, self.cct.root)]
        while stack:
            doc_node, node = stack.pop()
            self._add_values(node, doc_node, columns)
            if doc_node.trace_id is not None and MergeFlag.NORMALIZE_TRACE_IDS in self.merge_flags:
                node.trace_ids.add((input_index, doc_node.trace_id))
            for doc_child in doc_node.children:
                kind = NodeKind(doc_child.kind)
                if kind is NodeKind.ROOT:
                    raise DiagnosticError(f"Profile '{path}' has a root node below the root")
                key = (kind, doc_child.name, doc_child.file, doc_child.line)
                child = self.cct.find_child(node, key)
                if child is None:
                    child = self.cct.add_child(
                        node, kind, doc_child.name, file=doc_child.file, line=doc_child.line
                    )
                stack.append((doc_child, child))

    def _columns_for(
        self, input_index: int, path: str, document: ProfileDocument
    ) -> list[list[int]]:
        """Return, per document metric, the catalog ids its samples land in."""
        if self.merge_policy is MergePolicy.CREATE_METRIC:
            if self.group_map is not None:
                owner = ("group", self.group_map[input_index])
                label = f"g{self.group_map[input_index]}"
            else:
                owner = ("input", input_index)
                label = Path(path).stem
        else:
            owner = ("shared",)
            label = None

        columns = []
        for position, metric in enumerate(document.metrics):
            targets = []
            for base_name, kind in self._variants(metric):
                key = (owner, position, base_name) if label is not None else (owner, base_name)
                if key not in self._columns:
                    descriptor = MetricDescriptor(
                        name=f"{base_name} [{label}]" if label is not None else base_name,
                        kind=kind,
                        base_name=base_name,
                        unit=metric.unit,
                        period=metric.period,
                        db_info=(
                            MetricDBInfo(metric.db_id, metric.db_num_metrics or 0)
                            if metric.db_id is not None
                            else None
                        ),
                    )
                    self._columns[key] = self.catalog.add_source(descriptor).metric_id
                targets.append(self._columns[key])
            columns.append(targets)
        return columns

    def _variants(self, metric: MetricDocument) -> list[tuple[str, MetricKind]]:
        if ReadFlag.MAKE_INCL_EXCL in self.read_flags:
            return [
                (f"{metric.name} (I)", MetricKind.INCLUSIVE),
                (f"{metric.name} (E)", MetricKind.EXCLUSIVE),
            ]
        return [(metric.name, MetricKind(metric.kind))]

    @staticmethod
    def _add_values(node, doc_node: NodeDocument, columns: list[list[int]]) -> None:
        for position, raw in enumerate(doc_node.values):
            if raw is None:
                continue
            for metric_id in columns[position]:
                node.values[metric_id] += raw


def read_profiles(
    paths: Sequence[str],
    group_map: Optional[Sequence[int]] = None,
    merge_policy: MergePolicy = MergePolicy.CREATE_METRIC,
    read_flags: ReadFlag = ReadFlag.NONE,
    merge_flags: MergeFlag = MergeFlag.NONE,
) -> Profile:
    """Read every profile in ``paths`` and merge them, in order, into one Profile."""
    if not paths:
        raise DiagnosticError("No profile files to merge")
    if group_map is not None and len(group_map) != len(paths):
        raise DiagnosticError("Profile grouping map does not match the profile list")

    merger = _ProfileMerger(group_map, merge_policy, read_flags, merge_flags)
    name = None
    for input_index, path in enumerate(paths):
        document = load_profile_document(Path(path))
        if name is None:
            name = document.name
        merger.merge(input_index, path, document)
        logger.info("Merged profile %s (%d metrics)", path, len(document.metrics))

    return Profile(
        name=name or "",
        cct=merger.cct,
        catalog=merger.catalog,
        source_paths=list(paths),
    )


__all__ = [
    "MetricDocument",
    "NodeDocument",
    "ProfileDocument",
    "load_profile_document",
    "NormalizedProfileArgs",
    "normalize_profile_args",
    "read_profiles",
]
