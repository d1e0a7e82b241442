"""
Outlier detection for training-data quality.

Univariate detectors (score every value of a series):
  z_score           |x - mean| / std            > threshold (3.0)
  modified_z_score  0.6745 (x - median) / MAD   > threshold (3.5)
  iqr               outside [Q1 - k IQR, Q3 + k IQR], k = 1.5

Contextual / multivariate detectors:
  time_series_window  local z-score against a centered window that
                      excludes the point itself (edges shrink)
  mahalanobis         sqrt(|d' S^-1 d|) over feature rows, S inverted by
                      Gauss-Jordan; singular S -> identity

Order statistics use the upper-middle element of the sorted sample
(sorted[n // 2]) for the median, and sorted[floor(q n)] for quartiles.
Zero spread (std, MAD, IQR or local std == 0) never divides: the score is
defined as 0 so constant data produces no false positives.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from analytics.linalg import invert_matrix
from constants import MODIFIED_Z_SCALE

log = logging.getLogger("analytics.outliers")

UNIVARIATE_METHODS = ("z_score", "modified_z_score", "iqr")


@dataclass(frozen=True)
class OutlierResult:
    is_outlier: bool
    score: float
    method: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class QualityStatistics:
    mean: float
    median: float
    std_dev: float
    iqr: float
    mad: float


@dataclass(frozen=True)
class DataQualityReport:
    """Outcome of one cleaning pass; indices refer to the input order."""
    total_points: int
    outlier_indices: Tuple[int, ...]
    outlier_percentage: float
    clean_values: Tuple[float, ...]
    statistics: QualityStatistics


# ─── Order statistics ───────────────────────────────────────────


def _order_stat(values: np.ndarray, q: float) -> float:
    ordered = np.sort(values)
    return float(ordered[int(math.floor(len(ordered) * q))])


def _median(values: np.ndarray) -> float:
    return _order_stat(values, 0.5)


def _mad(values: np.ndarray, median: float) -> float:
    return _median(np.abs(values - median))


def _quartiles(values: np.ndarray) -> Tuple[float, float]:
    return _order_stat(values, 0.25), _order_stat(values, 0.75)


# ─── Univariate detectors ───────────────────────────────────────


def detect_outliers_zscore(values: Sequence[float], threshold: float = 3.0) -> List[OutlierResult]:
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0:
        return []
    mean = x.mean()
    std = x.std()
    results = []
    for v in x:
        z = 0.0 if std == 0 else abs((v - mean) / std)
        flagged = z > threshold
        results.append(OutlierResult(
            is_outlier=bool(flagged),
            score=float(z),
            method="z_score",
            reason=(f"{z:.2f} standard deviations from mean (threshold: {threshold})"
                    if flagged else None),
        ))
    return results


def detect_outliers_modified_zscore(values: Sequence[float], threshold: float = 3.5) -> List[OutlierResult]:
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0:
        return []
    median = _median(x)
    mad = _mad(x, median)
    results = []
    for v in x:
        score = 0.0 if mad == 0 else abs(MODIFIED_Z_SCALE * (v - median) / mad)
        flagged = score > threshold
        results.append(OutlierResult(
            is_outlier=bool(flagged),
            score=float(score),
            method="modified_z_score",
            reason=f"Modified Z-score: {score:.2f} (threshold: {threshold})" if flagged else None,
        ))
    return results


def detect_outliers_iqr(values: Sequence[float], multiplier: float = 1.5) -> List[OutlierResult]:
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0:
        return []
    q1, q3 = _quartiles(x)
    iqr = q3 - q1
    lower = q1 - multiplier * iqr
    upper = q3 + multiplier * iqr

    results = []
    for v in x:
        flagged = v < lower or v > upper
        score = 0.0
        if iqr > 0:
            if v < lower:
                score = (lower - v) / iqr
            elif v > upper:
                score = (v - upper) / iqr
        results.append(OutlierResult(
            is_outlier=bool(flagged),
            score=float(score),
            method="iqr",
            reason=f"Outside bounds [{lower:.1f}, {upper:.1f}]" if flagged else None,
        ))
    return results


def detect(values: Sequence[float], method: str = "modified_z_score", **params) -> List[OutlierResult]:
    """Run one of the univariate detectors by name."""
    if method == "z_score":
        return detect_outliers_zscore(values, **params)
    if method == "modified_z_score":
        return detect_outliers_modified_zscore(values, **params)
    if method == "iqr":
        return detect_outliers_iqr(values, **params)
    raise ValueError(f"Unknown outlier method: {method!r} (expected one of {UNIVARIATE_METHODS})")


# ─── Contextual / multivariate detectors ────────────────────────


def detect_time_series_outliers(values: Sequence[float], window_size: int = 7,
                                threshold: float = 2.5) -> List[OutlierResult]:
    """Local z-score of each point against its ±window_size neighbours.

    Accepts plain numbers or TimeSeriesPoint-like items (anything with a
    ``value`` attribute) already in time order; the window is positional.
    """
    x = np.asarray([getattr(v, "value", v) for v in values], dtype=np.float64)
    n = len(x)
    results = []
    for i in range(n):
        start = max(0, i - window_size)
        end = min(n, i + window_size + 1)
        window = np.concatenate([x[start:i], x[i + 1:end]])
        if window.size == 0:
            results.append(OutlierResult(False, 0.0, "time_series_window"))
            continue
        mean = window.mean()
        std = window.std()
        z = 0.0 if std == 0 else abs((x[i] - mean) / std)
        flagged = z > threshold
        results.append(OutlierResult(
            is_outlier=bool(flagged),
            score=float(z),
            method="time_series_window",
            reason=(f"{z:.2f}σ from local window (expected: {mean:.1f} ± {std:.1f})"
                    if flagged else None),
        ))
    return results


def mahalanobis_distance(point, mean, inv_cov) -> float:
    diff = np.asarray(point, dtype=np.float64) - np.asarray(mean, dtype=np.float64)
    return float(math.sqrt(abs(diff @ inv_cov @ diff)))


def detect_multi_feature_outliers(rows: Sequence[Sequence[float]],
                                  threshold: float = 3.0) -> List[OutlierResult]:
    """Mahalanobis distance of every row against the sample mean/covariance.

    Covariance is the population estimate (divide by n).  If it cannot be
    inverted the identity is used instead, so the score degrades to the
    Euclidean distance from the mean rather than failing.
    """
    if len(rows) == 0:
        return []
    x = np.asarray(rows, dtype=np.float64)
    if x.ndim != 2:
        raise ValueError("Multi-feature detection expects equally sized feature rows")

    means = x.mean(axis=0)
    centered = x - means
    cov = centered.T @ centered / len(x)
    inv_cov = invert_matrix(cov)

    results = []
    for row in x:
        d = mahalanobis_distance(row, means, inv_cov)
        flagged = d > threshold
        results.append(OutlierResult(
            is_outlier=bool(flagged),
            score=d,
            method="mahalanobis",
            reason=f"Mahalanobis distance: {d:.2f}" if flagged else None,
        ))
    return results


# ─── Quality report ─────────────────────────────────────────────


def generate_data_quality_report(values: Sequence[float],
                                 method: str = "modified_z_score") -> DataQualityReport:
    """Flag outliers with *method* and summarise the ORIGINAL series."""
    x = np.asarray(values, dtype=np.float64)
    if x.size == 0:
        return DataQualityReport(0, (), 0.0, (), QualityStatistics(0.0, 0.0, 0.0, 0.0, 0.0))

    results = detect(x, method)
    outliers = tuple(i for i, r in enumerate(results) if r.is_outlier)
    flagged = set(outliers)
    clean = tuple(float(v) for i, v in enumerate(x) if i not in flagged)

    median = _median(x)
    q1, q3 = _quartiles(x)
    stats = QualityStatistics(
        mean=float(x.mean()),
        median=median,
        std_dev=float(x.std()),
        iqr=q3 - q1,
        mad=_mad(x, median),
    )
    pct = len(outliers) / len(x) * 100
    if outliers:
        log.info("   %d/%d outliers flagged by %s (%.1f%%)", len(outliers), len(x), method, pct)

    return DataQualityReport(
        total_points=len(x),
        outlier_indices=outliers,
        outlier_percentage=pct,
        clean_values=clean,
        statistics=stats,
    )
