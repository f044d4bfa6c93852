"""
histogram.py — read-count histogram over samples

Bins are computed once over a log-spaced domain (global min..max of per-sample
total reads) and then re-used for every geographic subset, so the site can
filter the same histogram by a selected country or region.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence

import numpy as np

DEFAULT_DOMAIN = (0.0, 10_000_000.0)
DEFAULT_BINS = 50


@dataclass
class ReadsHistogram:
    histogram: List[dict] = field(default_factory=list)
    median: Dict[str, float] = field(default_factory=dict)

    def to_json(self) -> dict:
        return {"histogram": self.histogram, "median": self.median}


def log_space(a: float, b: float, n: int) -> np.ndarray:
    """n + 1 bin edges equally spaced in log10 between a and b."""
    a = max(float(a), 1.0)
    b = max(float(b), 1.0)
    if b <= a:
        b = a * 10
    return np.logspace(np.log10(a), np.log10(b), num=n + 1)


def _counts(values: Sequence[float], edges: np.ndarray) -> np.ndarray:
    if not len(values):
        return np.zeros(len(edges) - 1, dtype=int)
    clipped = np.clip(np.asarray(values, dtype=float), edges[0], edges[-1])
    counts, _ = np.histogram(clipped, bins=edges)
    return counts


def reads_histogram(
    totals: Mapping[str, float],
    groups: Mapping[str, Iterable[str]] | None = None,
    bins: int = DEFAULT_BINS,
) -> ReadsHistogram:
    """
    totals: sample -> total reads
    groups: sample -> geographic keys (country code, region) it belongs to

    Every sample lands in exactly one bin: values outside the log domain (e.g. 0)
    are clipped to the first/last bin.
    """
    groups = groups or {}
    values = [float(v) for v in totals.values()]
    lo, hi = (min(values), max(values)) if values else DEFAULT_DOMAIN
    edges = log_space(lo, hi, bins)

    by_key: Dict[str, List[float]] = {}
    for sample, total in totals.items():
        for key in groups.get(sample, ()):
            if key:
                by_key.setdefault(key, []).append(float(total))

    overall = _counts(values, edges)
    per_key = {key: _counts(vals, edges) for key, vals in by_key.items()}

    histogram = []
    for i in range(bins):
        lo_edge, hi_edge = float(edges[i]), float(edges[i + 1])
        samples = {"total": int(overall[i])}
        for key, counts in per_key.items():
            if counts[i]:
                samples[key] = int(counts[i])
        histogram.append({
            "samples": samples,
            "min": lo_edge,
            "max": hi_edge,
            "mid": float(np.sqrt(lo_edge * hi_edge)),
        })

    median = {"total": float(np.median(values)) if values else 0.0}
    for key, vals in by_key.items():
        median[key] = float(np.median(vals))

    return ReadsHistogram(histogram=histogram, median=median)
