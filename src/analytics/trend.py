"""
Mann-Kendall trend test with Sen's slope.

  S      = Σ_{i<j} sign(x_j − x_i) · sign(t_j − t_i)
  Var(S) = n(n−1)(2n+5) / 18                       (no tie correction)
  Z      = (S − 1)/√Var  if S > 0,  (S + 1)/√Var if S < 0,  0 otherwise
  p      = 2 (1 − Φ(|Z|))                           two-tailed
  τ      = S / (n(n−1)/2)
  slope  = median of (x_j − x_i) / days(t_j − t_i) over non-zero gaps

The direction label is gated on significance: increasing / decreasing
only when p < 0.05, otherwise "stable" whatever the slope says.
Downstream narration relies on this, so a steep but noisy series must
still read as stable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, Tuple

import numpy as np

from constants import SECONDS_PER_DAY, TREND_ALPHA

log = logging.getLogger("analytics.trend")

MIN_TREND_POINTS = 4


@dataclass(frozen=True)
class TimeSeriesPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class TrendAnalysis:
    direction: str
    slope: float
    confidence: float
    p_value: float
    kendall_tau: float


STABLE_TREND = TrendAnalysis(direction="stable", slope=0.0, confidence=0.0, p_value=1.0, kendall_tau=0.0)


def normal_cdf(z: float) -> float:
    """Standard normal CDF (Abramowitz & Stegun 26.2.17)."""
    # Closed-form approximation is the required p-value method for the
    # trend test; accurate to ~7.5e-8 against scipy.stats.norm.cdf.
    t = 1 / (1 + 0.2316419 * abs(z))
    d = 0.3989423 * math.exp(-z * z / 2)
    p = d * t * (0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274))))
    return 1 - p if z > 0 else p


def _pairwise(series: Sequence[TimeSeriesPoint]) -> Tuple[np.ndarray, np.ndarray]:
    """Upper-triangle value and day differences, oriented by list position."""
    values = np.array([p.value for p in series], dtype=np.float64)
    t_min = min(p.timestamp for p in series)
    days = np.array([(p.timestamp - t_min).total_seconds() / SECONDS_PER_DAY for p in series])
    iu = np.triu_indices(len(series), k=1)
    return (values[None, :] - values[:, None])[iu], (days[None, :] - days[:, None])[iu]


def sens_slope(series: Sequence[TimeSeriesPoint]) -> float:
    """Median pairwise slope per day over pairs with distinct timestamps.

    Each pair is oriented by time, so the input order does not matter.
    0 when every timestamp is the same.
    """
    if len(series) < 2:
        return 0.0
    rises, gaps = _pairwise(series)
    mask = gaps != 0
    if not mask.any():
        return 0.0
    slopes = np.sort(rises[mask] / gaps[mask])
    return float(slopes[len(slopes) // 2])


def detect_trend(series: Sequence[TimeSeriesPoint]) -> TrendAnalysis:
    """Mann-Kendall monotonic trend test over *series*.

    S sums sign(Δvalue) · sign(Δtime) over all pairs, so callers may pass
    sessions in any order; pairs sharing a timestamp contribute 0.
    """
    n = len(series)
    if n < MIN_TREND_POINTS:
        return STABLE_TREND

    rises, gaps = _pairwise(series)
    s = float((np.sign(rises) * np.sign(gaps)).sum())

    std_s = math.sqrt(n * (n - 1) * (2 * n + 5) / 18)
    if s > 0:
        z = (s - 1) / std_s
    elif s < 0:
        z = (s + 1) / std_s
    else:
        z = 0.0

    p_value = min(1.0, max(0.0, 2 * (1 - normal_cdf(abs(z)))))
    tau = s / (n * (n - 1) / 2)
    slope = sens_slope(series)

    if p_value < TREND_ALPHA:
        sign = slope if slope != 0 else s
        direction = "increasing" if sign > 0 else "decreasing"
    else:
        direction = "stable"

    log.debug("   Mann-Kendall n=%d S=%d Z=%.3f p=%.4f -> %s", n, s, z, p_value, direction)
    return TrendAnalysis(
        direction=direction,
        slope=slope,
        confidence=1 - p_value,
        p_value=p_value,
        kendall_tau=tau,
    )
