"""Helpers for turning a learning-loop run into human-readable text."""

from __future__ import annotations

from typing import List, Optional, Sequence

from analytics.bayesian import BayesianModel, DriftReport, calculate_model_confidence
from analytics.ensemble import EnsemblePrediction
from analytics.outliers import DataQualityReport
from analytics.regression import RegressionModel
from analytics.trend import TrendAnalysis

INSUFFICIENT_DATA_RECOMMENDATION = "Need at least {n} clean data points for meaningful predictions"
INSUFFICIENT_DATA_INSIGHT = "Continue logging training data to enable statistical learning"

OUTLIER_WARNING_PCT = 10.0
UNCERTAINTY_WARNING_RATIO = 0.3


def fit_label(r2: float) -> str:
    if r2 >= 0.7:
        return "excellent"
    if r2 >= 0.5:
        return "good"
    return "fair"


def generate_recommendations(trend: TrendAnalysis, quality: DataQualityReport,
                             prediction: EnsemblePrediction,
                             drift: Optional[DriftReport] = None) -> List[str]:
    recommendations: List[str] = []
    weekly = trend.slope * 7

    if trend.direction == "increasing":
        recommendations.append(
            f"Training load trending upward (+{weekly:.1f} per week). Monitor for overtraining signs."
        )
    elif trend.direction == "decreasing":
        recommendations.append(
            f"Training load decreasing ({weekly:.1f} per week). Consider if this is intentional taper."
        )

    if quality.outlier_percentage > OUTLIER_WARNING_PCT:
        recommendations.append(
            f"{quality.outlier_percentage:.1f}% of data points are outliers. "
            "Review data quality or consider abnormal training days."
        )

    if prediction.uncertainty > abs(prediction.value) * UNCERTAINTY_WARNING_RATIO:
        recommendations.append(
            "High prediction uncertainty detected. Models need more consistent data for accurate forecasting."
        )

    if drift is not None and drift.has_drift:
        recommendations.append(drift.recommendation)

    return recommendations


def top_coefficients(regression: RegressionModel, k: int = 3,
                     feature_names: Sequence[str] = ()) -> List[tuple]:
    """(name, |coefficient|) for the k largest coefficients by magnitude."""
    names = list(feature_names) or list(regression.feature_names)
    ranked = sorted(enumerate(regression.coefficients), key=lambda ic: abs(ic[1]), reverse=True)
    return [
        (names[i] if i < len(names) else f"feature {i}", abs(c))
        for i, c in ranked[:k]
    ]


def generate_insights(observation_count: int, trend: TrendAnalysis, quality: DataQualityReport,
                      regression: RegressionModel, bayesian: Optional[BayesianModel],
                      feature_names: Sequence[str] = ()) -> List[str]:
    n_outliers = len(quality.outlier_indices)
    insights = [
        f"Model trained on {observation_count} sessions with {n_outliers} outliers removed "
        f"({quality.outlier_percentage:.1f}%).",
        f"Regression R² score: {regression.r2_score * 100:.1f}% ({fit_label(regression.r2_score)} fit)",
    ]

    if bayesian is not None:
        insights.append(
            f"Bayesian model confidence: {calculate_model_confidence(bayesian) * 100:.1f}% "
            f"based on {bayesian.observations} observations"
        )

    if trend.direction != "stable":
        insights.append(
            f"Statistically significant {trend.direction} trend detected (p={trend.p_value:.3f})"
        )
    else:
        insights.append(
            f"No significant trend detected (p={trend.p_value:.3f}) - training load is stable"
        )

    top = top_coefficients(regression, 3, feature_names)
    insights.append(
        "Top predictive factors: " + ", ".join(f"{name} ({value:.2f})" for name, value in top)
    )
    return insights
