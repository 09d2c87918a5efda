"""Coalescing set of half-open integer ranges.

Metric ids of the same aggregation kind are batched into contiguous runs so
the aggregator can work on array slices rather than single ids. Runs are kept
in a sorted list; every insertion merges with the runs it overlaps or touches,
so the set always holds the minimal number of disjoint, non-adjacent runs and
the result does not depend on insertion order.
"""

from __future__ import annotations

from bisect import bisect_left
from typing import Iterable, Iterator, List, Tuple

Interval = Tuple[int, int]


class IntervalSet:
    """Sorted, coalesced collection of ``[begin, end)`` runs."""

    __slots__ = ("_runs",)

    def __init__(self, intervals: Iterable[Interval] = ()) -> None:
        self._runs: List[Interval] = []
        for begin, end in intervals:
            self.insert(begin, end)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def insert(self, begin: int, end: int) -> None:
        if end <= begin:
            raise ValueError(f"Interval end must be greater than begin: [{begin}, {end})")

        runs = self._runs
        i = bisect_left(runs, (begin, begin))
        if i > 0 and runs[i - 1][1] >= begin:
            i -= 1

        j = i
        new_begin, new_end = begin, end
        while j < len(runs) and runs[j][0] <= new_end:
            new_begin = min(new_begin, runs[j][0])
            new_end = max(new_end, runs[j][1])
            j += 1
        runs[i:j] = [(new_begin, new_end)]

    def update(self, other: "IntervalSet") -> None:
        for begin, end in other:
            self.insert(begin, end)

    def difference(self, other: "IntervalSet") -> "IntervalSet":
        """Return the runs of ``self`` with every id in ``other`` removed."""

        result = IntervalSet()
        for begin, end in self._runs:
            cursor = begin
            for other_begin, other_end in other:
                if other_end <= cursor or other_begin >= end:
                    continue
                if other_begin > cursor:
                    result.insert(cursor, other_begin)
                cursor = max(cursor, other_end)
                if cursor >= end:
                    break
            if cursor < end:
                result.insert(cursor, end)
        return result

    def ids(self) -> Iterator[int]:
        for begin, end in self._runs:
            yield from range(begin, end)

    def __iter__(self) -> Iterator[Interval]:
        return iter(list(self._runs))

    def __len__(self) -> int:
        return len(self._runs)

    def __bool__(self) -> bool:
        return bool(self._runs)

    def __contains__(self, value: int) -> bool:
        i = bisect_left(self._runs, (value + 1, value + 1))
        return i > 0 and self._runs[i - 1][0] <= value < self._runs[i - 1][1]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IntervalSet):
            return NotImplemented
        return self._runs == other._runs

    def __repr__(self) -> str:
        inner = ", ".join(f"[{begin}, {end})" for begin, end in self._runs)
        return f"IntervalSet({inner})"


__all__ = ["Interval", "IntervalSet"]
