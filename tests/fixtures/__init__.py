"""Helper fixtures for constructing deterministic trees and profile files."""

from .synthetic_profiles import (
    build_cct,
    find,
    node,
    profile_document,
    sample_tree_spec,
    single_metric_cct,
    write_profile,
    write_profiles,
)

__all__ = [
    "build_cct",
    "find",
    "node",
    "profile_document",
    "sample_tree_spec",
    "single_metric_cct",
    "write_profile",
    "write_profiles",
]
