from __future__ import annotations

import logging

import numpy as np

from cctmerge.models import CallingContextTree
from cctmerge.utils.interval_set import IntervalSet

from .classifier import MetricClassification

logger = logging.getLogger(__name__)


class CCTAggregator:
    """Fold observed metric values into per-node inclusive/exclusive values.

    Inclusive ids: a node's value becomes its own value plus the values of
    its whole subtree. Exclusive ids: a node keeps only its own value. Missing
    samples (NaN) count as zero under both rules.
    """

    def __init__(self, cct: CallingContextTree):
        self.cct = cct

    def aggregate(self, classification: MetricClassification) -> None:
        self.aggregate_inclusive(classification.inclusive)
        self.aggregate_exclusive(classification.exclusive)

    def aggregate_inclusive(self, ivalset: IntervalSet) -> None:
        pending = ivalset.difference(self.cct.aggregated_inclusive)
        if ivalset and not pending:
            logger.warning("Inclusive metrics %r are already aggregated; skipping", ivalset)
            return
        if not pending:
            return

        runs = list(pending)
        self._check_bounds(runs)
        order = self.cct.postorder()
        self._zero_missing(order, runs)

        # children precede parents, so each child is complete when it is folded up
        for node in order:
            if node.parent is None:
                continue
            parent = self.cct.node(node.parent)
            for begin, end in runs:
                parent.values[begin:end] += node.values[begin:end]

        self.cct.aggregated_inclusive.update(pending)
        logger.debug("Aggregated inclusive runs %r over %d nodes", pending, len(order))

    def aggregate_exclusive(self, ivalset: IntervalSet) -> None:
        if not ivalset:
            return
        runs = list(ivalset)
        self._check_bounds(runs)
        self._zero_missing(list(self.cct.preorder()), runs)
        logger.debug("Exclusive runs %r keep per-node values", ivalset)

    def _check_bounds(self, runs) -> None:
        for begin, end in runs:
            if begin < 0 or end > self.cct.width:
                raise IndexError(
                    f"Metric run [{begin}, {end}) exceeds metric array width {self.cct.width}"
                )

    @staticmethod
    def _zero_missing(nodes, runs) -> None:
        for node in nodes:
            for begin, end in runs:
                np.nan_to_num(node.values[begin:end], copy=False, nan=0.0)


__all__ = ["CCTAggregator"]
