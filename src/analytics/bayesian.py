"""
Sequential Bayesian linear regression (Normal-Gamma conjugate prior).

State is an immutable BayesianModel; every update returns a new model
and leaves its input untouched, so a full history is just a left fold:

    model = initialize_bayesian_model(k)
    for p in points:
        model = update_bayesian_model(model, p.features, p.target, p.weight)

Update for one observation (x, y) with weight w:

    Λ' = Λ + w x x'
    μ' = Λ'^-1 (Λ μ + w x y)
    α' = α + w / 2
    β' = β + w e² / 2,     e = y − x'μ   (residual under the previous mean)

Per-coefficient uncertainty is sqrt(|diag(Λ'^-1)| · β'/α') and the 95%
credible intervals are μ' ± 1.96 · uncertainty.  Each update costs one
k×k inversion (k = feature count), no sampling, fully deterministic.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from analytics.linalg import invert_matrix
from constants import Z_95

log = logging.getLogger("analytics.bayesian")

DEFAULT_PRIOR_VARIANCE = 1000.0
CONFIDENCE_SATURATION = 100
MIN_DRIFT_RESIDUALS = 5


def _frozen(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class BayesianPrior:
    mean: np.ndarray
    precision: np.ndarray
    alpha: float
    beta: float


@dataclass(frozen=True, eq=False)
class BayesianPosterior:
    mean: np.ndarray
    precision: np.ndarray
    alpha: float
    beta: float
    credible_intervals: Tuple[Tuple[float, float], ...]
    uncertainty: np.ndarray


@dataclass(frozen=True, eq=False)
class BayesianModel:
    prior: BayesianPrior
    posterior: BayesianPosterior
    observations: int

    @property
    def feature_count(self) -> int:
        return len(self.posterior.mean)


@dataclass(frozen=True)
class BayesianPrediction:
    mean: float
    variance: float
    credible_interval: Tuple[float, float]


@dataclass(frozen=True)
class DriftReport:
    has_drift: bool
    severity: float
    recommendation: str


def initialize_bayesian_model(feature_count: int, prior_mean: Optional[Sequence[float]] = None,
                              prior_variance: float = DEFAULT_PRIOR_VARIANCE) -> BayesianModel:
    """Weak prior: zero mean, isotropic variance *prior_variance*."""
    if feature_count < 1:
        raise ValueError("feature_count must be >= 1")
    if prior_variance <= 0:
        raise ValueError("prior_variance must be positive")
    mean = np.zeros(feature_count) if prior_mean is None else np.asarray(prior_mean, dtype=np.float64)
    if mean.shape != (feature_count,):
        raise ValueError(f"prior_mean must have {feature_count} entries")

    prior = BayesianPrior(
        mean=_frozen(mean),
        precision=_frozen(np.eye(feature_count) / prior_variance),
        alpha=1.0,
        beta=1.0,
    )
    posterior = BayesianPosterior(
        mean=prior.mean,
        precision=prior.precision,
        alpha=prior.alpha,
        beta=prior.beta,
        credible_intervals=tuple((-math.inf, math.inf) for _ in range(feature_count)),
        uncertainty=_frozen(np.ones(feature_count)),
    )
    return BayesianModel(prior=prior, posterior=posterior, observations=0)


def _check_features(model: BayesianModel, features: Sequence[float]) -> np.ndarray:
    x = np.asarray(features, dtype=np.float64)
    if x.shape != (model.feature_count,):
        raise ValueError(f"Bayesian model expects {model.feature_count} features, got {x.shape[0] if x.ndim else 0}")
    return x


def update_bayesian_model(model: BayesianModel, features: Sequence[float], target: float,
                          weight: float = 1.0) -> BayesianModel:
    """Conjugate update with one weighted observation; returns a new model."""
    post = model.posterior
    x = _check_features(model, features)

    new_precision = post.precision + weight * np.outer(x, x)
    rhs = post.precision @ post.mean + weight * x * target
    cov = invert_matrix(new_precision)
    new_mean = cov @ rhs

    error = target - float(x @ post.mean)
    new_alpha = post.alpha + 0.5 * weight
    new_beta = post.beta + 0.5 * weight * error * error

    noise_precision = new_alpha / new_beta
    uncertainty = np.sqrt(np.abs(np.diag(cov) / noise_precision))
    intervals = tuple(
        (float(m - Z_95 * u), float(m + Z_95 * u)) for m, u in zip(new_mean, uncertainty)
    )

    return BayesianModel(
        prior=model.prior,
        posterior=BayesianPosterior(
            mean=_frozen(new_mean),
            precision=_frozen(new_precision),
            alpha=new_alpha,
            beta=new_beta,
            credible_intervals=intervals,
            uncertainty=_frozen(uncertainty),
        ),
        observations=model.observations + 1,
    )


def batch_update_bayesian_model(model: BayesianModel, points: Iterable) -> BayesianModel:
    """Fold update_bayesian_model over DataPoint-like items (features, target, weight)."""
    for p in points:
        weight = getattr(p, "weight", None)
        model = update_bayesian_model(model, p.features, p.target, 1.0 if weight is None else weight)
    return model


def bayesian_predict(model: BayesianModel, features: Sequence[float]) -> BayesianPrediction:
    """Posterior predictive mean and variance σ² + x'Σx.

    σ² = β/(α−1) only exists once α > 1; before that the variance is
    reported as infinite.
    """
    post = model.posterior
    x = _check_features(model, features)
    mean = float(x @ post.mean)

    if post.alpha <= 1:
        return BayesianPrediction(mean=mean, variance=math.inf, credible_interval=(-math.inf, math.inf))

    noise_variance = post.beta / (post.alpha - 1)
    model_variance = float(x @ invert_matrix(post.precision) @ x)
    variance = noise_variance + model_variance
    std = math.sqrt(abs(variance))
    return BayesianPrediction(
        mean=mean,
        variance=variance,
        credible_interval=(mean - Z_95 * std, mean + Z_95 * std),
    )


def calculate_model_confidence(model: BayesianModel) -> float:
    """Grows with observations (saturating at 100), shrinks with uncertainty."""
    observation_conf = min(model.observations / CONFIDENCE_SATURATION, 1.0)
    avg_uncertainty = float(np.mean(model.posterior.uncertainty))
    return observation_conf * (1 / (1 + avg_uncertainty))


def detect_model_drift(model: BayesianModel, recent_residuals: Sequence[float],
                       threshold: float = 2.0) -> DriftReport:
    """Compare recent residual variance with the model's expected noise β/α."""
    if len(recent_residuals) < MIN_DRIFT_RESIDUALS:
        return DriftReport(False, 0.0, "Insufficient data for drift detection")

    expected_noise = model.posterior.beta / model.posterior.alpha
    residuals = np.asarray(recent_residuals, dtype=np.float64)
    severity = float(residuals.var() / expected_noise)
    has_drift = severity > threshold

    if not has_drift:
        recommendation = "Model performing well - no drift detected"
    elif severity > 5:
        recommendation = "Critical drift detected - recommend full model reset with recent data"
    elif severity > 3:
        recommendation = "Significant drift - increase learning rate or add more recent observations"
    else:
        recommendation = "Mild drift - continue monitoring"

    if has_drift:
        log.info("   Drift severity %.2f (threshold %.1f)", severity, threshold)
    return DriftReport(has_drift=has_drift, severity=severity, recommendation=recommendation)
