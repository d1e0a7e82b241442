"""
Feature engineering for training-session observations.

Each observation becomes one DataPoint whose feature vector has a fixed
order (see FEATURE_NAMES):

  raw        distance, duration, elevation
  derived    pace = distance / (duration / 60)   (0 when duration <= 0)
  physiology avg_hr, perceived_effort, sleep_quality, readiness
             (missing values replaced by population defaults)
  temporal   sin / cos of the weekday on a 7-day cycle (Sunday = 0)
  rolling    trailing 3-session mean distance in timestamp order (the
             two oldest sessions use their own distance)

Every point also carries a recency weight exp(-days_since / 30) measured
against *as_of*, which defaults to the latest observation so the same
history always produces the same weights.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from analytics.regression import DataPoint
from constants import (
    DEFAULT_AVG_HR,
    DEFAULT_FATIGUE,
    DEFAULT_PERCEIVED_EFFORT,
    DEFAULT_READINESS,
    DEFAULT_SLEEP_QUALITY,
    SECONDS_PER_DAY,
    TARGET_VARIABLES,
)

log = logging.getLogger("analytics.features")

FEATURE_NAMES = (
    "distance",
    "duration",
    "elevation",
    "pace",
    "avg_hr",
    "perceived_effort",
    "sleep_quality",
    "readiness",
    "weekday_sin",
    "weekday_cos",
    "rolling_3_distance",
)

RECENCY_SCALE_DAYS = 30.0
ROLLING_WINDOW = 3

_PHYSIO_DEFAULTS = {
    "avg_hr": DEFAULT_AVG_HR,
    "perceived_effort": DEFAULT_PERCEIVED_EFFORT,
    "sleep_quality": DEFAULT_SLEEP_QUALITY,
    "readiness": DEFAULT_READINESS,
}


@dataclass(frozen=True)
class TrainingData:
    """One logged training session (distance km, duration min, elevation m)."""
    timestamp: datetime
    distance: float
    duration: float
    elevation: float
    avg_hr: Optional[float] = None
    perceived_effort: Optional[float] = None
    fatigue: Optional[float] = None
    sleep_quality: Optional[float] = None
    readiness: Optional[float] = None


def get_target_value(observation: TrainingData, target_variable: str) -> float:
    """Value of the modelled variable for one observation."""
    if target_variable == "distance":
        return float(observation.distance)
    if target_variable == "fatigue":
        return float(observation.fatigue if observation.fatigue is not None else DEFAULT_FATIGUE)
    if target_variable == "readiness":
        return float(observation.readiness if observation.readiness is not None else DEFAULT_READINESS)
    raise ValueError(f"Unknown target variable: {target_variable!r} (expected one of {TARGET_VARIABLES})")


def observations_to_frame(observations: Sequence[TrainingData]) -> pd.DataFrame:
    """Tabulate observations, keeping the caller's ordering."""
    columns = [f.name for f in fields(TrainingData)]
    df = pd.DataFrame([[getattr(o, c) for c in columns] for o in observations], columns=columns)
    df["timestamp"] = pd.to_datetime(df["timestamp"])
    return df


def chronological_order(timestamps: Sequence[datetime]) -> List[int]:
    """Input positions sorted oldest-first; equal timestamps keep input order."""
    stamps = pd.Series(pd.to_datetime(list(timestamps)))
    return stamps.sort_values(kind="stable").index.tolist()


def _feature_frame(df: pd.DataFrame) -> pd.DataFrame:
    feats = pd.DataFrame(index=df.index)
    feats["distance"] = df["distance"].astype(float).fillna(0.0)
    feats["duration"] = df["duration"].astype(float).fillna(0.0)
    feats["elevation"] = df["elevation"].astype(float).fillna(0.0)

    hours = feats["duration"] / 60.0
    feats["pace"] = np.where(feats["duration"] > 0, feats["distance"] / hours.where(hours > 0, 1.0), 0.0)

    for col, default in _PHYSIO_DEFAULTS.items():
        feats[col] = pd.to_numeric(df[col], errors="coerce").fillna(default)

    weekday = (df["timestamp"].dt.dayofweek + 1) % 7
    angle = 2 * math.pi * weekday / 7
    feats["weekday_sin"] = np.sin(angle)
    feats["weekday_cos"] = np.cos(angle)

    by_time = feats["distance"].iloc[chronological_order(df["timestamp"])]
    rolling = by_time.rolling(ROLLING_WINDOW, min_periods=ROLLING_WINDOW).mean().reindex(feats.index)
    feats["rolling_3_distance"] = rolling.fillna(feats["distance"])
    return feats[list(FEATURE_NAMES)]


def recency_weights(timestamps: pd.Series, as_of: Optional[datetime] = None) -> np.ndarray:
    """exp(-days_since / 30) for each timestamp, relative to *as_of*."""
    ref = pd.Timestamp(as_of) if as_of is not None else timestamps.max()
    days = (ref - timestamps).dt.total_seconds() / SECONDS_PER_DAY
    return np.exp(-days.to_numpy(dtype=np.float64) / RECENCY_SCALE_DAYS)


def engineer_features(observations: Sequence[TrainingData],
                      target_variable: str = "distance",
                      as_of: Optional[datetime] = None) -> List[DataPoint]:
    """One DataPoint per observation, in input order."""
    if not observations:
        return []

    df = observations_to_frame(observations)
    feats = _feature_frame(df)
    weights = recency_weights(df["timestamp"], as_of)
    targets = [get_target_value(o, target_variable) for o in observations]

    points = [
        DataPoint(
            features=tuple(float(v) for v in row),
            target=targets[i],
            weight=float(weights[i]),
            timestamp=observations[i].timestamp,
        )
        for i, row in enumerate(feats.to_numpy(dtype=np.float64))
    ]
    log.debug("   Engineered %d x %d feature matrix", len(points), len(FEATURE_NAMES))
    return points
