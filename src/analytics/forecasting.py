"""
Short-horizon forecasting for a single training metric.

Two self-assessing forecasters, each returning a ForecastResult with a
confidence score in [0, 1] = max(0, 1 − in-sample MSE / series variance):

  triple_exponential_smoothing  Holt level + trend smoothing,
                                forecast level + h·trend
  adaptive_moving_average       window picked from {3, 5, 7, 10, 14} by
                                one-step-ahead backtest MSE, flat forecast

Plus two descriptive helpers: additive seasonal decomposition and the
sample autocorrelation function.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import numpy as np

from analytics.trend import TimeSeriesPoint
from constants import Z_95

log = logging.getLogger("analytics.forecasting")

MA_WINDOWS = (3, 5, 7, 10, 14)
DEFAULT_MA_WINDOW = 7

SeriesLike = Union[Sequence[TimeSeriesPoint], Sequence[float]]


@dataclass(frozen=True)
class ForecastResult:
    predictions: Tuple[float, ...]
    lower_bound: Tuple[float, ...]
    upper_bound: Tuple[float, ...]
    confidence: float
    method: str


@dataclass(frozen=True)
class SeriesDecomposition:
    trend: Tuple[float, ...]
    seasonal: Tuple[float, ...]
    residual: Tuple[float, ...]


def _values(series: SeriesLike) -> np.ndarray:
    return np.array([getattr(p, "value", p) for p in series], dtype=np.float64)


def _fit_confidence(mse: float, values: np.ndarray) -> float:
    variance = float(values.var())
    if variance == 0:
        return 1.0 if mse == 0 else 0.0
    return max(0.0, 1 - mse / variance)


def _empty(method: str) -> ForecastResult:
    return ForecastResult((), (), (), 0.0, method)


def triple_exponential_smoothing(series: SeriesLike, alpha: float = 0.3, beta: float = 0.1,
                                 horizon: int = 7) -> ForecastResult:
    """Holt smoothing with level/trend; ±1.96σ bands from level residuals."""
    method = "triple_exponential_smoothing"
    values = _values(series)
    n = len(values)
    if n < 3:
        return _empty(method)

    level = values[0]
    trend = (values[-1] - values[0]) / n
    levels = [level]
    for v in values[1:]:
        prev_level = level
        level = alpha * v + (1 - alpha) * (prev_level + trend)
        trend = beta * (level - prev_level) + (1 - beta) * trend
        levels.append(level)

    predictions = [float(level + h * trend) for h in range(1, horizon + 1)]

    residuals = values - np.array(levels)
    sq = float(residuals @ residuals)
    sigma = math.sqrt(sq / (n - 1))
    mse = sq / n

    return ForecastResult(
        predictions=tuple(predictions),
        lower_bound=tuple(p - Z_95 * sigma for p in predictions),
        upper_bound=tuple(p + Z_95 * sigma for p in predictions),
        confidence=_fit_confidence(mse, values),
        method=method,
    )


def _backtest_mse(values: np.ndarray, window: int) -> float:
    errors = [values[i] - values[i - window:i].mean() for i in range(window, len(values))]
    return float(np.mean(np.square(errors)))


def adaptive_moving_average(series: SeriesLike, horizon: int = 7) -> ForecastResult:
    """Flat forecast from the best-backtesting trailing window.

    Windows longer than n/2 are skipped.  When none qualifies the forecast
    is the mean of everything available with unbounded bands and zero
    confidence.
    """
    values = _values(series)
    n = len(values)
    if n == 0:
        return _empty(f"moving_average_{DEFAULT_MA_WINDOW}")

    best_window = DEFAULT_MA_WINDOW
    best_mse = math.inf
    for window in MA_WINDOWS:
        if window > n / 2:
            continue
        mse = _backtest_mse(values, window)
        if mse < best_mse:
            best_mse = mse
            best_window = window

    forecast = float(values[-best_window:].mean())
    predictions = tuple(forecast for _ in range(horizon))
    method = f"moving_average_{best_window}"

    if math.isinf(best_mse):
        log.debug("   Series too short (n=%d) for any moving-average window", n)
        return ForecastResult(predictions, tuple(-math.inf for _ in predictions),
                              tuple(math.inf for _ in predictions), 0.0, method)

    sigma = math.sqrt(best_mse)
    return ForecastResult(
        predictions=predictions,
        lower_bound=tuple(p - Z_95 * sigma for p in predictions),
        upper_bound=tuple(p + Z_95 * sigma for p in predictions),
        confidence=_fit_confidence(best_mse, values),
        method=method,
    )


def decompose_series(series: SeriesLike, period: int = 7) -> SeriesDecomposition:
    """Additive trend + seasonal + residual split.

    Trend is a centered moving average of width *period* (edges copy the
    nearest full window), seasonal is the centered mean detrended value per
    phase.  Fewer than two full periods returns the series as trend.
    """
    values = _values(series)
    n = len(values)
    if n < period * 2:
        zeros = tuple(0.0 for _ in range(n))
        return SeriesDecomposition(tuple(float(v) for v in values), zeros, zeros)

    half = period // 2
    trend = np.zeros(n)
    for i in range(half, n - half):
        trend[i] = values[i - half:i + half + 1].sum() / period
    trend[:half] = trend[half]
    trend[n - half:] = trend[n - 1 - half]

    detrended = values - trend
    phases = np.arange(n) % period
    seasonal_avg = np.array([detrended[phases == k].mean() for k in range(period)])
    seasonal_avg -= seasonal_avg.mean()
    seasonal = seasonal_avg[phases]

    return SeriesDecomposition(
        trend=tuple(trend.tolist()),
        seasonal=tuple(seasonal.tolist()),
        residual=tuple((values - trend - seasonal).tolist()),
    )


def calculate_autocorrelation(series: SeriesLike, max_lag: int = 14) -> List[float]:
    """Sample ACF for lags 0..max_lag (biased estimator, lag 0 == 1)."""
    values = _values(series)
    n = len(values)
    if n == 0:
        return []
    centered = values - values.mean()
    variance = float(centered @ centered) / n
    if variance == 0:
        return [0.0 for _ in range(min(max_lag, n - 1) + 1)]
    return [
        float(centered[lag:] @ centered[:n - lag]) / n / variance
        for lag in range(min(max_lag, n - 1) + 1)
    ]
