"""Derived (summary) metric formulas and their evaluation over the CCT.

Each derived descriptor carries a :class:`MetricFormula`. The evaluator does
not know what a formula computes; it only guarantees that every input the
formula names is a fully aggregated source metric before the first node is
evaluated.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Sequence

import numpy as np

from cctmerge.common.errors import DiagnosticError
from cctmerge.models import CallingContextTree, CCTNode, MetricKind, SummaryStat

logger = logging.getLogger(__name__)


class MetricFormula(ABC):
    """Per-node evaluation contract for a derived metric."""

    def __init__(self, inputs: Sequence[int]):
        if not inputs:
            raise ValueError("A metric formula needs at least one input metric")
        self.inputs: tuple[int, ...] = tuple(inputs)
        self._index = np.asarray(self.inputs, dtype=np.intp)

    @abstractmethod
    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        ...

    def describe(self) -> str:
        args = ", ".join(f"${i}" for i in self.inputs)
        return f"{self.label}({args})"

    label = "formula"

    def _operands(self, values: np.ndarray) -> np.ndarray:
        return values[self._index]


class SumFormula(MetricFormula):
    label = "sum"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(np.sum(self._operands(values)))


class MeanFormula(MetricFormula):
    label = "mean"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(np.mean(self._operands(values)))


class MinFormula(MetricFormula):
    label = "min"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(np.min(self._operands(values)))


class MaxFormula(MetricFormula):
    label = "max"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(np.max(self._operands(values)))


class StdDevFormula(MetricFormula):
    """Population standard deviation across the inputs."""

    label = "stddev"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(np.std(self._operands(values)))


class CoefVarFormula(MetricFormula):
    label = "cv"

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        operands = self._operands(values)
        mean = float(np.mean(operands))
        if mean == 0.0:
            return 0.0
        return float(np.std(operands)) / mean


class RatioFormula(MetricFormula):
    """``scale * numerator / denominator``; zero where the denominator is zero."""

    label = "ratio"

    def __init__(self, numerator: int, denominator: int, scale: float = 1.0):
        super().__init__((numerator, denominator))
        self.scale = scale

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        numerator, denominator = self._operands(values)
        if denominator == 0.0:
            return 0.0
        return float(self.scale * numerator / denominator)

    def describe(self) -> str:
        numerator, denominator = self.inputs
        prefix = f"{self.scale:g} * " if self.scale != 1.0 else ""
        return f"{prefix}${numerator} / ${denominator}"


class CustomFormula(MetricFormula):
    """Wraps a caller-supplied ``fn(node, operands) -> float``."""

    def __init__(
        self,
        fn: Callable[[CCTNode, np.ndarray], float],
        inputs: Sequence[int],
        label: str = "custom",
    ):
        super().__init__(inputs)
        self.fn = fn
        self.label = label

    def evaluate(self, node: CCTNode, values: np.ndarray) -> float:
        return float(self.fn(node, self._operands(values)))


STAT_FORMULAS: dict[SummaryStat, type[MetricFormula]] = {
    SummaryStat.SUM: SumFormula,
    SummaryStat.MEAN: MeanFormula,
    SummaryStat.STDDEV: StdDevFormula,
    SummaryStat.COEF_VAR: CoefVarFormula,
    SummaryStat.MIN: MinFormula,
    SummaryStat.MAX: MaxFormula,
}


def make_stat_formula(stat: SummaryStat, inputs: Sequence[int]) -> MetricFormula:
    return STAT_FORMULAS[stat](inputs)


class DerivedMetricEvaluator:
    def __init__(self, catalog):
        self.catalog = catalog

    def evaluate(self, cct: CallingContextTree, begin: int, end: int) -> None:
        """Compute derived metrics ``[begin, end)`` at every node of ``cct``."""

        if begin >= end:
            return
        if cct.width < end:
            raise DiagnosticError(
                f"Metric arrays hold {cct.width} values but derived metric {end - 1} was requested"
            )

        formulas = []
        for metric_id in range(begin, end):
            descriptor = self.catalog.metric(metric_id)
            if descriptor.kind is not MetricKind.DERIVED:
                raise DiagnosticError(
                    f"Metric {metric_id} ('{descriptor.name}') is not a derived metric"
                )
            self._check_inputs(descriptor)
            formulas.append((metric_id, descriptor.formula))

        for node in cct.preorder():
            for metric_id, formula in formulas:
                node.values[metric_id] = formula.evaluate(node, node.values)

        for metric_id in range(begin, end):
            self.catalog.metric(metric_id).is_computed = True

        logger.info("Evaluated %d derived metrics over %d nodes", end - begin, len(cct))

    def _check_inputs(self, descriptor) -> None:
        for input_id in descriptor.formula.inputs:
            if not 0 <= input_id < len(self.catalog):
                raise DiagnosticError(
                    f"Derived metric '{descriptor.name}' refers to unknown metric {input_id}"
                )
            source = self.catalog.metric(input_id)
            if source.kind is MetricKind.DERIVED:
                raise DiagnosticError(
                    f"Derived metric '{descriptor.name}' depends on derived metric "
                    f"'{source.name}'; only source metrics may be inputs"
                )
            if not source.is_computed:
                raise DiagnosticError(
                    f"Derived metric '{descriptor.name}' reads '{source.name}' before it is aggregated"
                )


__all__ = [
    "MetricFormula",
    "SumFormula",
    "MeanFormula",
    "MinFormula",
    "MaxFormula",
    "StdDevFormula",
    "CoefVarFormula",
    "RatioFormula",
    "CustomFormula",
    "STAT_FORMULAS",
    "make_stat_formula",
    "DerivedMetricEvaluator",
]
