"""Batch source metrics into inclusive and exclusive id runs."""

from __future__ import annotations

from dataclasses import dataclass, field

from cctmerge.models import MetricKind
from cctmerge.utils.interval_set import IntervalSet

from .metric_catalog import MetricCatalog


@dataclass
class MetricClassification:
    inclusive: IntervalSet = field(default_factory=IntervalSet)
    exclusive: IntervalSet = field(default_factory=IntervalSet)


def hide_source_metrics(catalog: MetricCatalog, begin: int, end: int) -> None:
    """Hide source metrics from default views; their values stay in the data."""
    for metric_id in range(begin, end):
        catalog.metric(metric_id).is_visible = False


def classify_metrics(catalog: MetricCatalog, begin: int, end: int) -> MetricClassification:
    """Sort source metrics ``[begin, end)`` by aggregation kind.

    Every classified metric is marked computed right away; aggregation of the
    returned runs completes before anything else reads the catalog. Metrics
    that are already computed are skipped so a second derivation cycle cannot
    aggregate them twice.
    """
    classification = MetricClassification()
    for metric_id in range(begin, end):
        descriptor = catalog.metric(metric_id)
        if descriptor.is_computed:
            continue
        if descriptor.kind is MetricKind.INCLUSIVE:
            classification.inclusive.insert(metric_id, metric_id + 1)
        elif descriptor.kind is MetricKind.EXCLUSIVE:
            classification.exclusive.insert(metric_id, metric_id + 1)
        descriptor.is_computed = True
    return classification


__all__ = ["MetricClassification", "hide_source_metrics", "classify_metrics"]
