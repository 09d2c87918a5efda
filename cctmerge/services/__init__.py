from .aggregator import CCTAggregator
from .classifier import MetricClassification, classify_metrics, hide_source_metrics
from .derivation import (
    CustomFormula,
    DerivedMetricEvaluator,
    MetricFormula,
    RatioFormula,
    make_stat_formula,
)
from .metric_catalog import MetricCatalog
from .pipeline import (
    PipelineConfig,
    PipelineOrchestrator,
    PipelineResult,
    make_metrics,
    run_pipeline,
)

__all__ = [
    "CCTAggregator",
    "MetricClassification",
    "classify_metrics",
    "hide_source_metrics",
    "CustomFormula",
    "DerivedMetricEvaluator",
    "MetricFormula",
    "RatioFormula",
    "make_stat_formula",
    "MetricCatalog",
    "PipelineConfig",
    "PipelineOrchestrator",
    "PipelineResult",
    "make_metrics",
    "run_pipeline",
]
