"""cctmerge - merge sampled call-path profiles into one calling context tree.

Profiles are merged into a single CCT, static program structure is overlaid
onto it, metrics are aggregated (inclusive/exclusive) and optionally
summarized, and the result is written as an experiment database.
"""

__version__ = "0.1.0"
