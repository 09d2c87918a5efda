import math

import numpy as np
import pytest

from cctmerge.common.errors import DiagnosticError
from cctmerge.models import MetricDescriptor, MetricKind, SummaryStat
from cctmerge.services.aggregator import CCTAggregator
from cctmerge.services.classifier import classify_metrics
from cctmerge.services.derivation import (
    CoefVarFormula,
    CustomFormula,
    DerivedMetricEvaluator,
    RatioFormula,
    SumFormula,
)
from cctmerge.services.metric_catalog import MetricCatalog

from .fixtures import build_cct, find, node


def _three_profile_setup(stats):
    """Three inclusive source metrics; main has own values 1, 2, 6."""
    spec = node(
        "<program root>",
        [0, 0, 0],
        [node("main", [1, 2, 6], [node("leaf", [3, 3, 3])])],
        kind="root",
    )
    catalog = MetricCatalog()
    for label in "abc":
        catalog.add_source(
            MetricDescriptor(name=f"CYCLES [{label}]", kind=MetricKind.INCLUSIVE, base_name="CYCLES")
        )
    begin = catalog.make_summary_metrics(0, 3, stats)
    cct = build_cct(spec, width=len(catalog))
    CCTAggregator(cct).aggregate(classify_metrics(catalog, 0, 3))
    return catalog, cct, begin


def test_summary_stats_match_hand_computation():
    stats = [SummaryStat.SUM, SummaryStat.MEAN, SummaryStat.MIN, SummaryStat.MAX, SummaryStat.STDDEV]
    catalog, cct, begin = _three_profile_setup(stats)

    DerivedMetricEvaluator(catalog).evaluate(cct, begin, len(catalog))

    main = find(cct, "main")
    # inclusive per-profile values at main: 4, 5, 9
    total, mean, low, high, std = main.values[begin : begin + 5]
    assert total == 18
    assert mean == 6
    assert low == 4
    assert high == 9
    assert std == pytest.approx(math.sqrt(((4 - 6) ** 2 + (5 - 6) ** 2 + (9 - 6) ** 2) / 3))
    assert all(catalog.metric(i).is_computed for i in catalog.derived_range())


def test_sum_of_inclusive_sources_is_inclusive():
    catalog, cct, begin = _three_profile_setup([SummaryStat.SUM])

    DerivedMetricEvaluator(catalog).evaluate(cct, begin, len(catalog))

    assert cct.root.values[begin] == 4 + 5 + 9
    assert find(cct, "leaf").values[begin] == 9


def test_derived_reading_unaggregated_source_fails_fast():
    catalog = MetricCatalog()
    catalog.add_source(MetricDescriptor(name="CYCLES", kind=MetricKind.INCLUSIVE))
    begin = catalog.make_summary_metrics(0, 1, [SummaryStat.SUM])
    cct = build_cct(node("<program root>", [1, 0], kind="root"), width=2)

    with pytest.raises(DiagnosticError, match="before it is aggregated"):
        DerivedMetricEvaluator(catalog).evaluate(cct, begin, len(catalog))
    assert not catalog.metric(begin).is_computed


def test_derived_metric_may_not_read_derived_metric():
    catalog = MetricCatalog()
    catalog.add_source(MetricDescriptor(name="CYCLES", kind=MetricKind.INCLUSIVE, is_computed=True))
    catalog.add_derived(MetricDescriptor(name="s", kind=MetricKind.DERIVED, formula=SumFormula([0])))
    catalog.add_derived(MetricDescriptor(name="t", kind=MetricKind.DERIVED, formula=SumFormula([1])))
    cct = build_cct(node("<program root>", [1], kind="root"), width=3)

    with pytest.raises(DiagnosticError, match="depends on derived metric"):
        DerivedMetricEvaluator(catalog).evaluate(cct, 1, 3)


def test_unknown_input_metric_is_rejected():
    catalog = MetricCatalog()
    catalog.add_source(MetricDescriptor(name="CYCLES", kind=MetricKind.INCLUSIVE, is_computed=True))
    catalog.add_derived(MetricDescriptor(name="s", kind=MetricKind.DERIVED, formula=SumFormula([7])))
    cct = build_cct(node("<program root>", [1], kind="root"), width=2)

    with pytest.raises(DiagnosticError, match="unknown metric"):
        DerivedMetricEvaluator(catalog).evaluate(cct, 1, 2)


def test_ratio_and_custom_formulas():
    catalog = MetricCatalog()
    catalog.add_source(MetricDescriptor(name="INSTR", kind=MetricKind.INCLUSIVE))
    catalog.add_source(MetricDescriptor(name="CYCLES", kind=MetricKind.INCLUSIVE))
    catalog.add_derived(
        MetricDescriptor(name="IPC", kind=MetricKind.DERIVED, formula=RatioFormula(0, 1))
    )
    catalog.add_derived(
        MetricDescriptor(
            name="depth_weighted",
            kind=MetricKind.DERIVED,
            formula=CustomFormula(lambda n, ops: ops[0] * (n.index + 1), [1], label="weighted"),
        )
    )
    spec = node("<program root>", [0, 0], [node("main", [8, 4]), node("idle", [2, 0])], kind="root")
    cct = build_cct(spec, width=len(catalog))
    CCTAggregator(cct).aggregate(classify_metrics(catalog, 0, 2))

    DerivedMetricEvaluator(catalog).evaluate(cct, 2, 4)

    assert cct.root.values[2] == pytest.approx(10 / 4)
    assert find(cct, "main").values[2] == 2
    assert find(cct, "idle").values[2] == 0  # zero denominator
    assert find(cct, "main").values[3] == 4 * (find(cct, "main").index + 1)
    assert catalog.metric(3).formula.describe() == "weighted($1)"


def test_coefficient_of_variation_of_zero_mean_is_zero():
    formula = CoefVarFormula([0, 1])
    values = np.array([0.0, 0.0])

    assert formula.evaluate(None, values) == 0.0
    assert formula.evaluate(None, np.array([2.0, 6.0])) == pytest.approx(0.5)


def test_narrow_metric_arrays_are_rejected():
    catalog = MetricCatalog()
    catalog.add_source(MetricDescriptor(name="CYCLES", kind=MetricKind.INCLUSIVE, is_computed=True))
    catalog.make_summary_metrics(0, 1, [SummaryStat.SUM])
    cct = build_cct(node("<program root>", [1], kind="root"), width=1)

    with pytest.raises(DiagnosticError):
        DerivedMetricEvaluator(catalog).evaluate(cct, 1, 2)
