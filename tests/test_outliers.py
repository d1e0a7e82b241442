"""
Tests for outlier detection and the data-quality report.

Covers: z-score / modified z-score / IQR detectors, zero-spread guards,
the windowed time-series detector, Mahalanobis scoring (including the
singular-covariance fallback) and generate_data_quality_report.
"""
import math

import numpy as np
import pytest
from scipy import stats
from scipy.spatial import distance

from analytics.outliers import (
    detect,
    detect_multi_feature_outliers,
    detect_outliers_iqr,
    detect_outliers_modified_zscore,
    detect_outliers_zscore,
    detect_time_series_outliers,
    generate_data_quality_report,
    mahalanobis_distance,
)

TYPICAL_WEEK = [40, 42, 38, 45, 150, 41, 43]


def _flagged(results):
    return [i for i, r in enumerate(results) if r.is_outlier]


# ─── Univariate detectors ─────────────────────────────────────


class TestModifiedZScore:
    """Median/MAD based detector (default for the loop)."""

    def test_single_spike_is_the_only_outlier(self):
        results = detect_outliers_modified_zscore(TYPICAL_WEEK)
        assert _flagged(results) == [4]

    def test_spike_score_matches_hand_computation(self):
        # median = 42, MAD = 2  →  0.6745 · 108 / 2
        results = detect_outliers_modified_zscore(TYPICAL_WEEK)
        assert abs(results[4].score - 0.6745 * 108 / 2) < 1e-9
        assert "Modified Z-score" in results[4].reason

    def test_clean_points_have_no_reason(self):
        results = detect_outliers_modified_zscore(TYPICAL_WEEK)
        assert all(r.reason is None for i, r in enumerate(results) if i != 4)

    def test_constant_series_has_zero_scores(self):
        results = detect_outliers_modified_zscore([5.0] * 10)
        assert all(r.score == 0.0 and not r.is_outlier for r in results)

    def test_empty_input(self):
        assert detect_outliers_modified_zscore([]) == []


class TestZScore:
    """Mean/std detector with population standard deviation."""

    def test_scores_match_scipy(self):
        values = [1.0] * 20 + [100.0]
        results = detect_outliers_zscore(values)
        expected = np.abs(stats.zscore(values))
        np.testing.assert_allclose([r.score for r in results], expected)
        assert _flagged(results) == [20]

    def test_constant_series_never_flags(self):
        results = detect_outliers_zscore([3.0, 3.0, 3.0])
        assert _flagged(results) == []
        assert all(r.score == 0.0 for r in results)

    def test_threshold_is_strict(self):
        # Two points: each is exactly 1 std from the mean
        results = detect_outliers_zscore([0.0, 2.0], threshold=1.0)
        assert _flagged(results) == []


class TestIQR:
    """Tukey fences with floor-index quartiles."""

    def test_fences_and_score(self):
        values = list(range(1, 11)) + [100]
        results = detect_outliers_iqr(values)
        # Q1 = sorted[2] = 3, Q3 = sorted[8] = 9, IQR = 6, upper fence = 18
        assert _flagged(results) == [10]
        assert abs(results[10].score - (100 - 18) / 6) < 1e-9
        assert "Outside bounds" in results[10].reason

    def test_zero_iqr_scores_zero(self):
        results = detect_outliers_iqr([5.0] * 8)
        assert all(r.score == 0.0 for r in results)
        assert _flagged(results) == []


class TestDispatch:

    @pytest.mark.parametrize("method", ["z_score", "modified_z_score", "iqr"])
    def test_known_methods(self, method):
        results = detect(TYPICAL_WEEK, method)
        assert len(results) == len(TYPICAL_WEEK)
        assert all(r.method == method for r in results)

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError, match="Unknown outlier method"):
            detect(TYPICAL_WEEK, "grubbs")


# ─── Contextual / multivariate ────────────────────────────────


class TestTimeSeriesWindow:

    def test_local_spike_flagged(self):
        values = [10.0, 11.0] * 10
        values[10] = 30.0
        results = detect_time_series_outliers(values, window_size=7)
        assert _flagged(results) == [10]

    def test_point_excluded_from_its_own_window(self):
        # A flat neighbourhood has zero local std → score 0 even for the spike
        values = [10.0] * 9
        values[4] = 50.0
        results = detect_time_series_outliers(values, window_size=2)
        assert results[4].score == 0.0

    def test_single_value_not_flagged(self):
        results = detect_time_series_outliers([42.0])
        assert results[0].is_outlier is False


class TestMahalanobis:

    def test_matches_scipy_on_full_rank_data(self):
        np.random.seed(42)
        rows = np.random.normal(0, 1, (40, 3))
        rows[:, 1] += 0.5 * rows[:, 0]
        results = detect_multi_feature_outliers(rows.tolist())

        mean = rows.mean(axis=0)
        cov = np.cov(rows.T, bias=True)
        inv = np.linalg.inv(cov)
        expected = [distance.mahalanobis(r, mean, inv) for r in rows]
        np.testing.assert_allclose([r.score for r in results], expected, rtol=1e-6)

    def test_singular_covariance_falls_back_to_euclidean(self):
        rows = [[1.0, 5.0], [2.0, 5.0], [3.0, 5.0]]
        results = detect_multi_feature_outliers(rows)
        np.testing.assert_allclose([r.score for r in results], [1.0, 0.0, 1.0])

    def test_distance_helper(self):
        d = mahalanobis_distance([3.0, 4.0], [0.0, 0.0], np.eye(2))
        assert abs(d - 5.0) < 1e-12

    def test_ragged_rows_rejected(self):
        with pytest.raises(ValueError):
            detect_multi_feature_outliers([[1.0, 2.0], [1.0]])


# ─── Quality report ───────────────────────────────────────────


class TestQualityReport:

    def test_report_contents(self):
        report = generate_data_quality_report(TYPICAL_WEEK)
        assert report.total_points == 7
        assert report.outlier_indices == (4,)
        assert abs(report.outlier_percentage - 100 / 7) < 1e-9
        assert report.clean_values == (40.0, 42.0, 38.0, 45.0, 41.0, 43.0)

    def test_statistics_describe_original_series(self):
        report = generate_data_quality_report(TYPICAL_WEEK)
        assert abs(report.statistics.mean - np.mean(TYPICAL_WEEK)) < 1e-9
        assert report.statistics.median == 42.0
        assert report.statistics.mad == 2.0
        assert abs(report.statistics.std_dev - np.std(TYPICAL_WEEK)) < 1e-9

    def test_even_length_median_is_upper_middle(self):
        report = generate_data_quality_report([1.0, 2.0, 3.0, 4.0])
        assert report.statistics.median == 3.0

    def test_empty_series(self):
        report = generate_data_quality_report([])
        assert report.total_points == 0
        assert report.outlier_indices == ()
        assert report.outlier_percentage == 0.0
        assert math.isfinite(report.statistics.mean)

    def test_alternative_method(self):
        report = generate_data_quality_report(list(range(1, 11)) + [100], method="iqr")
        assert report.outlier_indices == (10,)
