"""
Tests for recommendation and insight text.
"""
import math

from analytics.bayesian import DriftReport, batch_update_bayesian_model, initialize_bayesian_model
from analytics.ensemble import EnsemblePrediction, sentinel_prediction
from analytics.outliers import generate_data_quality_report
from analytics.regression import DataPoint, fit_linear_regression
from analytics.trend import STABLE_TREND, TrendAnalysis
from pipeline.narration import (
    INSUFFICIENT_DATA_RECOMMENDATION,
    fit_label,
    generate_insights,
    generate_recommendations,
    top_coefficients,
)

RISING = TrendAnalysis(direction="increasing", slope=1.0, confidence=0.99, p_value=0.01, kendall_tau=0.9)
FALLING = TrendAnalysis(direction="decreasing", slope=-0.5, confidence=0.98, p_value=0.02, kendall_tau=-0.8)
CLEAN = generate_data_quality_report([10.0, 11.0, 10.5, 9.5, 10.2])
DIRTY = generate_data_quality_report([40, 42, 38, 45, 150, 41, 43])


def _prediction(value, uncertainty):
    return EnsemblePrediction(value, 0.8, uncertainty, (value - 1.96 * uncertainty, value + 1.96 * uncertainty),
                              (), "adaptive")


def _regression():
    points = [DataPoint((float(i), float(i % 2), 1.0 + 0.01 * i * i), 3 * i + 0.5 * (i % 2) + 0.01 * i * i)
              for i in range(12)]
    return fit_linear_regression(points, feature_names=("a", "b", "c"))


class TestRecommendations:

    def test_quiet_run_has_no_recommendations(self):
        assert generate_recommendations(STABLE_TREND, CLEAN, _prediction(10.0, 1.0)) == []

    def test_upward_trend_reports_weekly_change(self):
        recs = generate_recommendations(RISING, CLEAN, _prediction(10.0, 1.0))
        assert recs == ["Training load trending upward (+7.0 per week). Monitor for overtraining signs."]

    def test_downward_trend(self):
        recs = generate_recommendations(FALLING, CLEAN, _prediction(10.0, 1.0))
        assert "(-3.5 per week)" in recs[0]
        assert "taper" in recs[0]

    def test_outlier_share_warning(self):
        recs = generate_recommendations(STABLE_TREND, DIRTY, _prediction(10.0, 1.0))
        assert recs[0].startswith("14.3% of data points are outliers")

    def test_uncertainty_warning(self):
        recs = generate_recommendations(STABLE_TREND, CLEAN, _prediction(10.0, 3.5))
        assert any("High prediction uncertainty" in r for r in recs)

    def test_sentinel_prediction_flags_uncertainty(self):
        recs = generate_recommendations(STABLE_TREND, CLEAN, sentinel_prediction("insufficient_models"))
        assert any("High prediction uncertainty" in r for r in recs)

    def test_drift_recommendation_appended(self):
        drift = DriftReport(True, 9.0, "Critical drift detected - recommend full model reset with recent data")
        recs = generate_recommendations(STABLE_TREND, CLEAN, _prediction(10.0, 1.0), drift)
        assert recs[-1].startswith("Critical drift")

    def test_no_drift_adds_nothing(self):
        drift = DriftReport(False, 1.0, "Model performing well - no drift detected")
        assert generate_recommendations(STABLE_TREND, CLEAN, _prediction(10.0, 1.0), drift) == []

    def test_insufficient_template(self):
        assert INSUFFICIENT_DATA_RECOMMENDATION.format(n=5) == \
            "Need at least 5 clean data points for meaningful predictions"


class TestInsights:

    def test_fit_labels(self):
        assert fit_label(0.9) == "excellent"
        assert fit_label(0.5) == "good"
        assert fit_label(0.1) == "fair"

    def test_top_coefficients_ranked_by_magnitude(self):
        top = top_coefficients(_regression(), k=2)
        assert len(top) == 2
        assert top[0][1] >= top[1][1]
        assert all(name in ("a", "b", "c") for name, _ in top)

    def test_insight_lines(self):
        bayes = batch_update_bayesian_model(
            initialize_bayesian_model(3), [DataPoint((1.0, float(i), 0.0), 2.0 * i) for i in range(10)]
        )
        insights = generate_insights(6, STABLE_TREND, DIRTY, _regression(), bayes)
        assert insights[0] == "Model trained on 6 sessions with 1 outliers removed (14.3%)."
        assert insights[1].startswith("Regression R² score:")
        assert "based on 10 observations" in insights[2]
        assert insights[3] == "No significant trend detected (p=1.000) - training load is stable"
        assert insights[4].startswith("Top predictive factors: ")

    def test_significant_trend_insight(self):
        insights = generate_insights(6, RISING, CLEAN, _regression(), None)
        assert len(insights) == 4
        assert insights[2] == "Statistically significant increasing trend detected (p=0.010)"

    def test_feature_name_fallback(self):
        top = top_coefficients(_regression(), k=1, feature_names=("only",))
        assert math.isfinite(top[0][1])
