from .interval_set import Interval, IntervalSet

__all__ = ["Interval", "IntervalSet"]
