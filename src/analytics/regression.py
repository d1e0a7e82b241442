"""
Regression models for training-load prediction.

All variants solve the normal equations on a design matrix X whose first
column is the intercept:

  linear         β = (X'X)^-1 X'y
  ridge          β = (X'X + λI*)^-1 X'y      I* skips the intercept, λ = 0.1
  time_weighted  β = (X'WX)^-1 X'Wy          w = exp(-ln2 · days_ago / half_life)
  polynomial     squares + pairwise interactions (+ cubes for degree >= 3),
                 then ridge with λ = 0.01

Fit metrics (R², MSE, MAE) are always computed against the unweighted
targets, even for the weighted fit.  A fitted RegressionModel is frozen;
refitting always yields a new model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np

from analytics.linalg import solve_linear_system
from constants import LN2, SECONDS_PER_DAY

log = logging.getLogger("analytics.regression")

MODEL_TYPES = ("linear", "ridge", "time_weighted", "polynomial")

DEFAULT_RIDGE_LAMBDA = 0.1
POLYNOMIAL_RIDGE_LAMBDA = 0.01
DEFAULT_HALF_LIFE_DAYS = 30.0


@dataclass(frozen=True)
class DataPoint:
    features: Tuple[float, ...]
    target: float
    weight: float = 1.0
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RegressionModel:
    coefficients: Tuple[float, ...]
    intercept: float
    r2_score: float
    mse: float
    mae: float
    sample_count: int
    model_type: str
    created_at: datetime
    feature_names: Tuple[str, ...] = field(default=())


# ─── Helpers ────────────────────────────────────────────────────


def _design_matrix(points: Sequence[DataPoint]) -> Tuple[np.ndarray, np.ndarray]:
    if not points:
        raise ValueError("Cannot fit a regression model on an empty dataset")
    width = len(points[0].features)
    if any(len(p.features) != width for p in points):
        raise ValueError("All data points must have the same number of features")
    X = np.ones((len(points), width + 1))
    if width:
        X[:, 1:] = np.array([p.features for p in points], dtype=np.float64)
    y = np.array([p.target for p in points], dtype=np.float64)
    return X, y


def calculate_metrics(actual, predicted) -> Tuple[float, float, float]:
    """(r2, mse, mae).  R² is 0 when the target has no variance."""
    actual = np.asarray(actual, dtype=np.float64)
    predicted = np.asarray(predicted, dtype=np.float64)
    errors = actual - predicted
    ss_res = float(errors @ errors)
    ss_tot = float(((actual - actual.mean()) ** 2).sum())
    n = len(actual)
    r2 = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return r2, ss_res / n, float(np.abs(errors).sum() / n)


def _build_model(beta: np.ndarray, X: np.ndarray, y: np.ndarray, model_type: str,
                 feature_names: Sequence[str] = ()) -> RegressionModel:
    r2, mse, mae = calculate_metrics(y, X @ beta)
    names = tuple(feature_names) or tuple(f"x{i}" for i in range(X.shape[1] - 1))
    log.debug("   %s fit: n=%d R²=%.3f MAE=%.3f", model_type, len(y), r2, mae)
    return RegressionModel(
        coefficients=tuple(float(b) for b in beta[1:]),
        intercept=float(beta[0]),
        r2_score=float(r2),
        mse=float(mse),
        mae=float(mae),
        sample_count=len(y),
        model_type=model_type,
        created_at=datetime.now(),
        feature_names=names,
    )


# ─── Fitters ────────────────────────────────────────────────────


def fit_linear_regression(points: Sequence[DataPoint],
                          feature_names: Sequence[str] = ()) -> RegressionModel:
    X, y = _design_matrix(points)
    beta = solve_linear_system(X.T @ X, X.T @ y)
    return _build_model(beta, X, y, "linear", feature_names)


def fit_ridge_regression(points: Sequence[DataPoint], lam: float = DEFAULT_RIDGE_LAMBDA,
                         feature_names: Sequence[str] = ()) -> RegressionModel:
    X, y = _design_matrix(points)
    xtx = X.T @ X
    idx = np.arange(1, xtx.shape[0])
    xtx[idx, idx] += lam
    beta = solve_linear_system(xtx, X.T @ y)
    return _build_model(beta, X, y, "ridge", feature_names)


def time_decay_weights(points: Sequence[DataPoint], half_life: float = DEFAULT_HALF_LIFE_DAYS,
                       as_of: Optional[datetime] = None) -> np.ndarray:
    """Half-life decay per point; 1.0 for points without a timestamp.

    *as_of* defaults to the latest timestamp present, keeping fits
    reproducible for a fixed history.
    """
    if half_life <= 0:
        raise ValueError("half_life must be positive")
    stamps = [p.timestamp for p in points if p.timestamp is not None]
    ref = as_of if as_of is not None else (max(stamps) if stamps else None)
    weights = np.ones(len(points))
    for i, p in enumerate(points):
        if p.timestamp is None:
            continue
        days_ago = (ref - p.timestamp).total_seconds() / SECONDS_PER_DAY
        weights[i] = np.exp(-LN2 * days_ago / half_life)
    return weights


def fit_time_weighted_regression(points: Sequence[DataPoint],
                                 half_life: float = DEFAULT_HALF_LIFE_DAYS,
                                 as_of: Optional[datetime] = None,
                                 feature_names: Sequence[str] = ()) -> RegressionModel:
    X, y = _design_matrix(points)
    w = time_decay_weights(points, half_life, as_of)
    xtw = X.T * w
    beta = solve_linear_system(xtw @ X, xtw @ y)
    return _build_model(beta, X, y, "time_weighted", feature_names)


def create_polynomial_features(features: Sequence[float], degree: int = 2) -> List[float]:
    """Original terms, then squares, pairwise products and (degree >= 3) cubes."""
    base = [float(f) for f in features]
    poly = list(base)
    if degree >= 2:
        poly.extend(f * f for f in base)
        for i in range(len(base)):
            for j in range(i + 1, len(base)):
                poly.append(base[i] * base[j])
    if degree >= 3:
        poly.extend(f ** 3 for f in base)
    return poly


def fit_polynomial_regression(points: Sequence[DataPoint], degree: int = 2) -> RegressionModel:
    expanded = [replace(p, features=tuple(create_polynomial_features(p.features, degree)))
                for p in points]
    return replace(fit_ridge_regression(expanded, POLYNOMIAL_RIDGE_LAMBDA), model_type="polynomial")


def fit(points: Sequence[DataPoint], variant: str = "linear", **params) -> RegressionModel:
    """Fit the named regression variant."""
    if variant == "linear":
        return fit_linear_regression(points, **params)
    if variant == "ridge":
        return fit_ridge_regression(points, **params)
    if variant == "time_weighted":
        return fit_time_weighted_regression(points, **params)
    if variant == "polynomial":
        return fit_polynomial_regression(points, **params)
    raise ValueError(f"Unknown regression variant: {variant!r} (expected one of {MODEL_TYPES})")


def predict_with_model(model: RegressionModel, features: Sequence[float]) -> float:
    """intercept + Σ coefficient_i · feature_i"""
    if len(features) != len(model.coefficients):
        raise ValueError(
            f"Model expects {len(model.coefficients)} features, got {len(features)}"
        )
    return model.intercept + float(np.dot(model.coefficients, features))
