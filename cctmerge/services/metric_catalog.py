from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, Iterator, Optional

from cctmerge.common.errors import DiagnosticError
from cctmerge.models import MetricDescriptor, MetricKind, SummaryStat

from .derivation import make_stat_formula

logger = logging.getLogger(__name__)


class MetricCatalog:
    """Ordered registry of metric descriptors.

    Source metrics occupy ``[0, num_source)`` and are appended while profiles
    are merged. Derived metrics are appended afterwards and occupy
    ``[num_source, len(catalog))``. A descriptor's ``metric_id`` is its
    position and never changes.
    """

    def __init__(self) -> None:
        self._metrics: list[MetricDescriptor] = []
        self._num_source = 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def add_source(self, descriptor: MetricDescriptor) -> MetricDescriptor:
        if descriptor.kind is MetricKind.DERIVED:
            raise DiagnosticError(f"'{descriptor.name}' is derived and cannot be a source metric")
        if self.num_derived:
            raise DiagnosticError(
                f"Cannot add source metric '{descriptor.name}' after derived metrics exist"
            )
        self._append(descriptor)
        self._num_source += 1
        return descriptor

    def add_derived(self, descriptor: MetricDescriptor) -> MetricDescriptor:
        if descriptor.kind is not MetricKind.DERIVED:
            raise DiagnosticError(f"'{descriptor.name}' is not a derived metric")
        return self._append(descriptor)

    def make_summary_metrics(
        self, src_begin: int, src_end: int, stats: Iterable[SummaryStat]
    ) -> Optional[int]:
        """Append summary metrics over the source metrics ``[src_begin, src_end)``.

        Source descriptors sharing a ``base_name`` form one group; each group
        gets one derived metric per requested statistic. Returns the id of
        the first new metric, or ``None`` when nothing was created.
        """
        stats = list(stats)
        if not 0 <= src_begin <= src_end <= self._num_source:
            raise DiagnosticError(
                f"Summary source range [{src_begin}, {src_end}) is outside the source metrics"
            )
        if not stats or src_begin == src_end:
            return None

        groups: "OrderedDict[str, list[MetricDescriptor]]" = OrderedDict()
        for metric_id in range(src_begin, src_end):
            descriptor = self._metrics[metric_id]
            groups.setdefault(descriptor.base_name, []).append(descriptor)

        begin = len(self._metrics)
        for base_name, members in groups.items():
            inputs = [member.metric_id for member in members]
            for stat in stats:
                self.add_derived(
                    MetricDescriptor(
                        name=f"{base_name}:{stat.value}",
                        kind=MetricKind.DERIVED,
                        base_name=base_name,
                        unit=members[0].unit,
                        formula=make_stat_formula(stat, inputs),
                    )
                )

        logger.info(
            "Created %d summary metrics for %d metric groups",
            len(self._metrics) - begin,
            len(groups),
        )
        return begin

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def num_source(self) -> int:
        return self._num_source

    @property
    def num_derived(self) -> int:
        return len(self._metrics) - self._num_source

    def source_range(self) -> range:
        return range(0, self._num_source)

    def derived_range(self) -> range:
        return range(self._num_source, len(self._metrics))

    def metric(self, metric_id: int) -> MetricDescriptor:
        return self._metrics[metric_id]

    def find(self, name: str) -> Optional[MetricDescriptor]:
        for descriptor in self._metrics:
            if descriptor.name == name:
                return descriptor
        return None

    def visible(self) -> list[MetricDescriptor]:
        return [descriptor for descriptor in self._metrics if descriptor.is_visible]

    def __len__(self) -> int:
        return len(self._metrics)

    def __iter__(self) -> Iterator[MetricDescriptor]:
        return iter(self._metrics)

    def __getitem__(self, metric_id: int) -> MetricDescriptor:
        return self._metrics[metric_id]

    def _append(self, descriptor: MetricDescriptor) -> MetricDescriptor:
        if descriptor.metric_id != -1:
            raise DiagnosticError(f"Metric '{descriptor.name}' is already registered")
        descriptor.metric_id = len(self._metrics)
        self._metrics.append(descriptor)
        return descriptor


__all__ = ["MetricCatalog"]
