"""In-process counters and duration histograms for the import pipeline.

Counters track pipeline outcomes (``importer.started``, ``importer.rollback``,
``store.open.retry``, ...). Histograms track how long import runs take; their
buckets are flattened into ``histo.<name>.<bucket>`` counters so one
``get_counters()`` call shows everything.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field

# Upper bounds in milliseconds. Imports of small boards finish in tens of
# milliseconds; large legacy snapshots with card extraction take seconds.
IMPORT_DURATION_BUCKETS_MS: tuple[int, ...] = (10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000)


@dataclass
class _Histogram:
    bounds: tuple[int, ...]
    buckets: dict[str, int] = field(default_factory=dict)
    total: int = 0
    count: int = 0

    def observe(self, value: int) -> None:
        label = next((f"le_{ub}" for ub in self.bounds if value <= ub), f"gt_{self.bounds[-1]}")
        self.buckets[label] = self.buckets.get(label, 0) + 1
        self.total += int(value)
        self.count += 1


_counters: dict[str, int] = defaultdict(int)
_histograms: dict[str, _Histogram] = {}


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()


def get_counters() -> dict[str, int]:
    out = dict(_counters)
    for name, h in _histograms.items():
        for label, cnt in h.buckets.items():
            out[f"histo.{name}.{label}"] = cnt
        out[f"histo.{name}.sum"] = h.total
        out[f"histo.{name}.count"] = h.count
    return out


def observe_histogram(
    name: str, value: int, *, buckets: Sequence[int] = IMPORT_DURATION_BUCKETS_MS
) -> None:
    """Record ``value`` (ms) under the first bucket bound it does not exceed.

    Values past the last bound land in ``gt_<last>``. The bounds of a
    histogram are fixed by its first observation.
    """
    h = _histograms.get(name)
    if h is None:
        h = _histograms[name] = _Histogram(tuple(buckets))
    h.observe(value)
