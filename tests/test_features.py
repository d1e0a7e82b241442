"""
Tests for feature engineering over TrainingData sessions.
"""
import math
from datetime import datetime, timedelta

import numpy as np
import pytest

from analytics.features import (
    FEATURE_NAMES,
    TrainingData,
    chronological_order,
    engineer_features,
    get_target_value,
    observations_to_frame,
)
from conftest import make_sessions

SUNDAY = datetime(2024, 1, 7, 8, 0)


def _feature(point, name):
    return point.features[FEATURE_NAMES.index(name)]


class TestFeatureVector:

    def test_width_matches_names(self):
        points = engineer_features(make_sessions([5, 6, 7]))
        assert len(FEATURE_NAMES) == 11
        assert all(len(p.features) == 11 for p in points)

    def test_pace_in_km_per_hour(self):
        obs = [TrainingData(SUNDAY, distance=10.0, duration=60.0, elevation=0.0)]
        assert _feature(engineer_features(obs)[0], "pace") == 10.0

    def test_zero_duration_has_zero_pace(self):
        obs = [TrainingData(SUNDAY, distance=3.0, duration=0.0, elevation=0.0)]
        assert _feature(engineer_features(obs)[0], "pace") == 0.0

    def test_missing_physiology_defaults(self):
        point = engineer_features([TrainingData(SUNDAY, 5.0, 30.0, 0.0)])[0]
        assert _feature(point, "avg_hr") == 150.0
        assert _feature(point, "perceived_effort") == 5.0
        assert _feature(point, "sleep_quality") == 7.0
        assert _feature(point, "readiness") == 75.0

    def test_explicit_zero_is_kept(self):
        point = engineer_features([TrainingData(SUNDAY, 5.0, 30.0, 0.0, avg_hr=0.0, readiness=0.0)])[0]
        assert _feature(point, "avg_hr") == 0.0
        assert _feature(point, "readiness") == 0.0

    def test_weekday_encoding_starts_on_sunday(self):
        sunday, monday = engineer_features(make_sessions([5, 5], start=SUNDAY))
        assert abs(_feature(sunday, "weekday_sin")) < 1e-12
        assert abs(_feature(sunday, "weekday_cos") - 1.0) < 1e-12
        assert abs(_feature(monday, "weekday_sin") - math.sin(2 * math.pi / 7)) < 1e-12

    def test_rolling_distance(self):
        points = engineer_features(make_sessions([3, 6, 9, 12]))
        assert [_feature(p, "rolling_3_distance") for p in points] == [3.0, 6.0, 6.0, 9.0]

    def test_rolling_distance_follows_timestamps(self):
        sessions = make_sessions([3, 6, 9, 12])
        shuffled = [sessions[3], sessions[1], sessions[0], sessions[2]]
        points = engineer_features(shuffled)
        # chronological values [3, 6, 6, 9] read back in the shuffled order
        assert [_feature(p, "rolling_3_distance") for p in points] == [9.0, 6.0, 3.0, 6.0]

    def test_rolling_distance_newest_first(self):
        sessions = make_sessions([3, 6, 9, 12])
        points = engineer_features(sessions[::-1])
        assert [_feature(p, "rolling_3_distance") for p in points] == [9.0, 6.0, 6.0, 3.0]

    def test_matches_raw_fields(self):
        obs = make_sessions([8.0])[0]
        point = engineer_features([obs])[0]
        assert point.features[:3] == (obs.distance, obs.duration, obs.elevation)


class TestWeightsAndTargets:

    def test_recency_weight_relative_to_latest(self):
        points = engineer_features(make_sessions([5, 5], step_days=30))
        assert abs(points[0].weight - math.exp(-1)) < 1e-12
        assert points[1].weight == 1.0

    def test_explicit_as_of(self):
        sessions = make_sessions([5])
        points = engineer_features(sessions, as_of=sessions[0].timestamp + timedelta(days=15))
        assert abs(points[0].weight - math.exp(-0.5)) < 1e-12

    def test_input_order_preserved(self):
        sessions = make_sessions([1, 2, 3, 4])
        shuffled = [sessions[2], sessions[0], sessions[3], sessions[1]]
        points = engineer_features(shuffled)
        assert [p.target for p in points] == [3.0, 1.0, 4.0, 2.0]
        assert [p.timestamp for p in points] == [s.timestamp for s in shuffled]

    @pytest.mark.parametrize("target,expected", [("distance", 5.0), ("fatigue", 5.0), ("readiness", 75.0)])
    def test_target_defaults(self, target, expected):
        obs = TrainingData(SUNDAY, 5.0, 30.0, 0.0)
        assert get_target_value(obs, target) == expected

    def test_target_uses_recorded_value(self):
        obs = TrainingData(SUNDAY, 5.0, 30.0, 0.0, fatigue=8.0)
        assert engineer_features([obs], "fatigue")[0].target == 8.0

    def test_unknown_target(self):
        with pytest.raises(ValueError, match="Unknown target variable"):
            get_target_value(TrainingData(SUNDAY, 5.0, 30.0, 0.0), "vo2max")

    def test_empty_history(self):
        assert engineer_features([]) == []


class TestFrame:

    def test_frame_keeps_all_fields(self):
        df = observations_to_frame(make_sessions([1, 2]))
        assert list(df.columns[:4]) == ["timestamp", "distance", "duration", "elevation"]
        assert len(df) == 2
        assert np.issubdtype(df["timestamp"].dtype, np.datetime64)


class TestChronologicalOrder:

    def test_sorts_oldest_first(self):
        sessions = make_sessions([1, 2, 3, 4])
        stamps = [sessions[i].timestamp for i in (2, 0, 3, 1)]
        assert chronological_order(stamps) == [1, 3, 0, 2]

    def test_equal_timestamps_keep_input_order(self):
        t = datetime(2024, 3, 3, 7, 0)
        assert chronological_order([t + timedelta(days=1), t, t, t - timedelta(days=1)]) == [3, 1, 2, 0]

    def test_empty(self):
        assert chronological_order([]) == []
