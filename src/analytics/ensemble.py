"""
Ensemble combination of heterogeneous model predictions.

Strategies (each member contributes its first prediction):

  weighted_average  weights normalised over members with weight > 0;
                    uncertainty = sqrt(Σ w (p − value)²)
  median            upper-middle prediction; uncertainty = 1.4826 · MAD
  adaptive          weights = 1 / (mean |recent error| + 0.01) for members
                    with error history, static weight otherwise, then as
                    weighted_average

Members with no predictions are skipped by every strategy.
Intervals are value ± 1.96 · uncertainty.  Not enough members (or no
positive weight) yields a sentinel with zero confidence and infinite
uncertainty rather than an exception.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

from constants import ERROR_EPSILON, MAD_TO_SIGMA, Z_95

log = logging.getLogger("analytics.ensemble")

MEMBER_TYPES = ("regression", "time_series", "bayesian", "custom")
STRATEGIES = ("weighted_average", "median", "adaptive")

WEIGHT_LEARNING_RATE = 0.1
MIN_MEMBER_WEIGHT = 0.1
MAX_MEMBER_WEIGHT = 5.0


@dataclass(frozen=True)
class MemberPerformance:
    mae: float = 0.0
    mse: float = 0.0
    r2: float = 0.0
    recent_accuracy: float = 0.0


@dataclass(frozen=True)
class EnsembleMember:
    id: str
    name: str
    type: str
    weight: float
    performance: MemberPerformance
    predictions: Tuple[float, ...]
    confidence: Optional[float] = None

    @property
    def point(self) -> float:
        return self.predictions[0]

    @property
    def effective_confidence(self) -> float:
        """Explicit confidence, else the member's R²."""
        return self.confidence if self.confidence is not None else self.performance.r2


@dataclass(frozen=True)
class ModelContribution:
    model_id: str
    prediction: float
    weight: float


@dataclass(frozen=True)
class EnsemblePrediction:
    value: float
    confidence: float
    uncertainty: float
    interval: Tuple[float, float]
    model_contributions: Tuple[ModelContribution, ...]
    method: str

    @property
    def is_sentinel(self) -> bool:
        return math.isinf(self.uncertainty)


@dataclass(frozen=True)
class EnsembleConfig:
    method: str = "adaptive"
    min_models: int = 2
    adaptive_window: int = 10
    confidence_threshold: float = 0.5


@dataclass(frozen=True)
class Ensemble:
    config: EnsembleConfig
    members: Tuple[EnsembleMember, ...]


def sentinel_prediction(method: str) -> EnsemblePrediction:
    """The 'no usable model' answer: zero confidence, infinite uncertainty."""
    return EnsemblePrediction(
        value=0.0,
        confidence=0.0,
        uncertainty=math.inf,
        interval=(-math.inf, math.inf),
        model_contributions=(),
        method=method,
    )


def create_ensemble(members: Sequence[EnsembleMember], method: str = "adaptive", min_models: int = 2,
                    adaptive_window: int = 10, confidence_threshold: float = 0.5) -> Ensemble:
    if method not in STRATEGIES:
        raise ValueError(f"Unknown ensemble strategy: {method!r} (expected one of {STRATEGIES})")
    config = EnsembleConfig(method, min_models, adaptive_window, confidence_threshold)
    return Ensemble(config=config, members=tuple(members))


# ─── Strategies ─────────────────────────────────────────────────


def _predicting(members: Sequence[EnsembleMember]) -> List[EnsembleMember]:
    return [m for m in members if m.predictions]


def _combine_weighted(members: Sequence[EnsembleMember], weights: Sequence[float],
                      method: str) -> EnsemblePrediction:
    pairs = [(m, w) for m, w in zip(members, weights) if w > 0 and m.predictions]
    if not pairs:
        return sentinel_prediction(method)

    total = sum(w for _, w in pairs)
    norm = np.array([w / total for _, w in pairs])
    preds = np.array([m.point for m, _ in pairs], dtype=np.float64)
    confs = np.array([m.effective_confidence for m, _ in pairs], dtype=np.float64)

    value = float(norm @ preds)
    confidence = float(norm @ confs)
    uncertainty = math.sqrt(float(norm @ (preds - value) ** 2))

    return EnsemblePrediction(
        value=value,
        confidence=confidence,
        uncertainty=uncertainty,
        interval=(value - Z_95 * uncertainty, value + Z_95 * uncertainty),
        model_contributions=tuple(
            ModelContribution(m.id, m.point, float(w)) for (m, _), w in zip(pairs, norm)
        ),
        method=method,
    )


def weighted_average_prediction(members: Sequence[EnsembleMember]) -> EnsemblePrediction:
    return _combine_weighted(members, [m.weight for m in members], "weighted_average")


def median_prediction(members: Sequence[EnsembleMember]) -> EnsemblePrediction:
    members = _predicting(members)
    if not members:
        return sentinel_prediction("median")

    preds = np.array([m.point for m in members], dtype=np.float64)
    value = float(np.sort(preds)[len(preds) // 2])
    deviations = np.sort(np.abs(preds - value))
    uncertainty = MAD_TO_SIGMA * float(deviations[len(deviations) // 2])
    confidence = float(np.mean([m.effective_confidence for m in members]))

    return EnsemblePrediction(
        value=value,
        confidence=confidence,
        uncertainty=uncertainty,
        interval=(value - Z_95 * uncertainty, value + Z_95 * uncertainty),
        model_contributions=tuple(
            ModelContribution(m.id, m.point, 1 / len(members)) for m in members
        ),
        method="median",
    )


def adaptive_weights(members: Sequence[EnsembleMember],
                     recent_errors: Optional[Mapping[str, Sequence[float]]] = None,
                     window: Optional[int] = None) -> List[float]:
    """Inverse recent MAE per member; static weight when no history exists."""
    recent_errors = recent_errors or {}
    weights = []
    for m in members:
        errors = list(recent_errors.get(m.id, ()))
        if window:
            errors = errors[-window:]
        if not errors:
            weights.append(m.weight)
            continue
        mae = float(np.mean(np.abs(errors)))
        weights.append(1 / (mae + ERROR_EPSILON))
    return weights


def adaptive_prediction(members: Sequence[EnsembleMember],
                        recent_errors: Optional[Mapping[str, Sequence[float]]] = None,
                        window: Optional[int] = None) -> EnsemblePrediction:
    return _combine_weighted(members, adaptive_weights(members, recent_errors, window), "adaptive")


# ─── Entry points ───────────────────────────────────────────────


def combine(members: Sequence[EnsembleMember], strategy: str = "weighted_average",
            recent_errors: Optional[Mapping[str, Sequence[float]]] = None,
            min_models: int = 1, adaptive_window: Optional[int] = None) -> EnsemblePrediction:
    """Merge member predictions with the named strategy."""
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown ensemble strategy: {strategy!r} (expected one of {STRATEGIES})")
    usable = _predicting(members)
    if len(usable) < len(members):
        log.warning("   Ignoring %d ensemble member(s) without predictions", len(members) - len(usable))
    members = usable
    if len(members) < max(min_models, 1):
        log.info("   Ensemble has %d member(s), need %d", len(members), min_models)
        return sentinel_prediction("insufficient_models")

    if strategy == "median":
        return median_prediction(members)
    if strategy == "adaptive":
        return adaptive_prediction(members, recent_errors, adaptive_window)
    return weighted_average_prediction(members)


def ensemble_predict(ensemble: Ensemble,
                     recent_errors: Optional[Mapping[str, Sequence[float]]] = None) -> EnsemblePrediction:
    cfg = ensemble.config
    return combine(ensemble.members, cfg.method, recent_errors,
                   min_models=cfg.min_models, adaptive_window=cfg.adaptive_window)


def update_model_weights(members: Sequence[EnsembleMember], actual: float,
                         predicted: float) -> List[EnsembleMember]:
    """Damped reweighting after an outcome is known.

    ratio = ensemble_error / (member_error + 0.01); members beating the
    ensemble gain weight, laggards lose it, clamped to [0.1, 5.0].
    """
    ensemble_error = abs(predicted - actual)
    updated = []
    for m in members:
        if not m.predictions:
            updated.append(m)
            continue
        ratio = ensemble_error / (abs(m.point - actual) + ERROR_EPSILON)
        new_weight = m.weight * (1 + WEIGHT_LEARNING_RATE * (ratio - 1))
        updated.append(replace(m, weight=min(MAX_MEMBER_WEIGHT, max(MIN_MEMBER_WEIGHT, new_weight))))
    return updated


def calculate_ensemble_diversity(members: Sequence[EnsembleMember]) -> float:
    """Mean pairwise absolute disagreement of member predictions."""
    preds = [m.point for m in _predicting(members)]
    if len(preds) < 2:
        return 0.0
    diffs = [abs(preds[i] - preds[j]) for i in range(len(preds)) for j in range(i + 1, len(preds))]
    return float(np.mean(diffs))


def select_best_model(members: Sequence[EnsembleMember], has_outliers: bool = False,
                      is_trending: bool = False, is_volatile: bool = False,
                      sample_size: int = 0) -> Optional[EnsembleMember]:
    """Pick one member by R², nudged by what the data looks like."""
    if not members:
        return None
    best = members[0]
    best_score = 0.0
    for m in members:
        score = m.performance.r2
        if m.type == "bayesian" and sample_size < 20:
            score *= 1.3
        if has_outliers and m.type == "regression":
            score *= 1.2
        if is_trending and m.type == "time_series":
            score *= 1.4
        if is_volatile and m.performance.mse > 1.5 * best.performance.mse:
            score *= 0.8
        if score > best_score:
            best_score = score
            best = m
    return best
