"""
Shared test configuration.

Adds src/ to sys.path so the flat modules (constants, settings,
learning_loop) and the analytics / pipeline namespace packages import
exactly as they do at runtime, and provides synthetic session
histories used across test modules.
"""

import os
import sys
from datetime import datetime, timedelta

import numpy as np
import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_src_dir = os.path.join(_project_root, "src")

if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)

from analytics.features import TrainingData  # noqa: E402

START = datetime(2024, 1, 1, 7, 0)


def make_sessions(distances, start=START, step_days=1, **extra):
    """TrainingData list with duration = 6 min/km and elevation = 10 m/km."""
    return [
        TrainingData(
            timestamp=start + timedelta(days=i * step_days),
            distance=float(d),
            duration=float(d) * 6.0,
            elevation=float(d) * 10.0,
            **extra,
        )
        for i, d in enumerate(distances)
    ]


@pytest.fixture
def steady_sessions():
    """30 days of trendless running: a weekly swing around 8 km plus noise."""
    np.random.seed(42)
    days = np.arange(30)
    distances = 8.0 + 0.8 * np.sin(2 * np.pi * days / 7) + np.random.normal(0, 0.2, 30)
    return make_sessions(distances, avg_hr=145.0, perceived_effort=5.0, sleep_quality=7.0, readiness=70.0)


@pytest.fixture
def rising_sessions():
    """30 days of steadily increasing distance with mild noise."""
    np.random.seed(42)
    distances = 5.0 + 0.2 * np.arange(30) + np.random.normal(0, 0.3, 30)
    return make_sessions(distances)
