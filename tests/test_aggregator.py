import numpy as np
import pytest

from cctmerge.models import MetricDescriptor, MetricKind
from cctmerge.services.aggregator import CCTAggregator
from cctmerge.services.classifier import classify_metrics, hide_source_metrics
from cctmerge.services.metric_catalog import MetricCatalog
from cctmerge.utils.interval_set import IntervalSet

from .fixtures import build_cct, find, sample_tree_spec


def _subtree_sum(cct, node, metric_id):
    return node.values[metric_id] + sum(
        _subtree_sum(cct, child, metric_id) for child in cct.children_of(node)
    )


def test_inclusive_values_are_subtree_sums():
    cct = build_cct(sample_tree_spec(), width=2)
    expected = {n.name: _subtree_sum(cct, n, 0) for n in cct.preorder()}

    CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 1)]))

    assert {n.name: n.values[0] for n in cct.preorder()} == expected
    assert find(cct, "stmt").values[0] == 4
    assert find(cct, "foo").values[0] == 7
    assert find(cct, "main").values[0] == 14
    assert find(cct, "_start").values[0] == 6
    assert cct.root.values[0] == 21


def test_inclusive_node_equals_own_plus_children():
    cct = build_cct(sample_tree_spec(), width=2)
    own = {n.index: n.values[0] for n in cct.preorder()}

    CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 1)]))

    for n in cct.preorder():
        children_total = sum(child.values[0] for child in cct.children_of(n))
        assert n.values[0] == own[n.index] + children_total


def test_exclusive_values_stay_own_values():
    cct = build_cct(sample_tree_spec(), width=2)
    own = {n.name: n.values[1] for n in cct.preorder()}

    aggregator = CCTAggregator(cct)
    aggregator.aggregate_inclusive(IntervalSet([(0, 1)]))
    aggregator.aggregate_exclusive(IntervalSet([(1, 2)]))

    assert {n.name: n.values[1] for n in cct.preorder()} == own


def test_exclusive_parent_unaffected_by_child_change():
    cct = build_cct(sample_tree_spec(), width=2)
    find(cct, "foo").values[1] = 999

    CCTAggregator(cct).aggregate_exclusive(IntervalSet([(1, 2)]))

    assert find(cct, "main").values[1] == 20
    assert cct.root.values[1] == 10


def test_missing_samples_count_as_zero():
    cct = build_cct(sample_tree_spec(), width=2)
    find(cct, "bar").values[0] = np.nan
    find(cct, "baz").values[1] = np.nan

    aggregator = CCTAggregator(cct)
    aggregator.aggregate_inclusive(IntervalSet([(0, 1)]))
    aggregator.aggregate_exclusive(IntervalSet([(1, 2)]))

    assert find(cct, "bar").values[0] == 0
    assert find(cct, "main").values[0] == 9
    assert cct.root.values[0] == 16
    assert find(cct, "baz").values[1] == 0


def test_runs_aggregate_several_ids_at_once():
    cct = build_cct(sample_tree_spec(), width=2)

    CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 2)]))

    assert cct.root.values.tolist() == [21, 210]


def test_result_does_not_depend_on_child_order():
    spec = sample_tree_spec()
    cct = build_cct(spec, width=2)
    spec["children"].reverse()
    spec["children"][1]["children"].reverse()
    reordered = build_cct(spec, width=2)

    CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 2)]))
    CCTAggregator(reordered).aggregate_inclusive(IntervalSet([(0, 2)]))

    totals = {n.name: n.values.tolist() for n in cct.preorder()}
    assert totals == {n.name: n.values.tolist() for n in reordered.preorder()}


def test_rerunning_inclusive_aggregation_is_a_no_op():
    cct = build_cct(sample_tree_spec(), width=2)
    aggregator = CCTAggregator(cct)
    aggregator.aggregate_inclusive(IntervalSet([(0, 1)]))
    first = {n.index: n.values.copy() for n in cct.preorder()}

    aggregator.aggregate_inclusive(IntervalSet([(0, 1)]))
    CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 1)]))

    for n in cct.preorder():
        assert n.values.tolist() == first[n.index].tolist()


def test_run_beyond_array_width_is_rejected():
    cct = build_cct(sample_tree_spec(), width=2)

    with pytest.raises(IndexError):
        CCTAggregator(cct).aggregate_inclusive(IntervalSet([(0, 3)]))


def _catalog(kinds):
    catalog = MetricCatalog()
    for i, kind in enumerate(kinds):
        catalog.add_source(MetricDescriptor(name=f"m{i}", kind=kind))
    return catalog


def test_classification_groups_ids_by_kind():
    I, E = MetricKind.INCLUSIVE, MetricKind.EXCLUSIVE
    catalog = _catalog([I, I, I, E, I, I])

    classification = classify_metrics(catalog, 0, len(catalog))

    assert list(classification.inclusive) == [(0, 3), (4, 6)]
    assert list(classification.exclusive) == [(3, 4)]
    assert all(m.is_computed for m in catalog)


def test_classification_skips_computed_metrics():
    catalog = _catalog([MetricKind.INCLUSIVE, MetricKind.INCLUSIVE])
    classify_metrics(catalog, 0, 2)

    again = classify_metrics(catalog, 0, 2)

    assert not again.inclusive
    assert not again.exclusive


def test_hide_source_metrics():
    catalog = _catalog([MetricKind.INCLUSIVE, MetricKind.EXCLUSIVE])

    hide_source_metrics(catalog, 0, 2)

    assert not any(m.is_visible for m in catalog)


def test_second_derivation_cycle_does_not_double_count():
    catalog = _catalog([MetricKind.INCLUSIVE, MetricKind.EXCLUSIVE])
    cct = build_cct(sample_tree_spec(), width=2)

    for _ in range(2):
        CCTAggregator(cct).aggregate(classify_metrics(catalog, 0, 2))

    assert cct.root.values.tolist() == [21, 10]
