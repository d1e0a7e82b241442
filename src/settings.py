"""
Engine configuration loaded from the environment (.env supported).
Single source of truth for the tunable defaults of the learning loop.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

OUTLIER_METHODS = ("z_score", "modified_z_score", "iqr")
ENSEMBLE_METHODS = ("weighted_average", "median", "adaptive")


@dataclass(frozen=True)
class LoopOptions:
    """Knobs for one learning-loop invocation."""
    min_clean_points: int = 5
    outlier_method: str = "modified_z_score"
    ensemble_method: str = "adaptive"
    min_models: int = 2
    member_confidence_floor: float = 0.3
    half_life_days: float = 30.0
    include_bayesian: bool = True
    include_time_series: bool = True
    forecast_horizon: int = 1

    def __post_init__(self):
        if self.outlier_method not in OUTLIER_METHODS:
            raise ValueError(f"Unknown outlier method: {self.outlier_method!r}")
        if self.ensemble_method not in ENSEMBLE_METHODS:
            raise ValueError(f"Unknown ensemble method: {self.ensemble_method!r}")
        if self.half_life_days <= 0:
            raise ValueError("half_life_days must be positive")
        if self.forecast_horizon < 1:
            raise ValueError("forecast_horizon must be >= 1")

    def with_overrides(self, **changes) -> "LoopOptions":
        return replace(self, **changes)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


def load_options(base: Optional[LoopOptions] = None) -> LoopOptions:
    """Return LoopOptions with LEARNING_* environment overrides applied."""
    base = base or LoopOptions()
    return replace(
        base,
        min_clean_points=_env_int("LEARNING_MIN_CLEAN_POINTS", base.min_clean_points),
        outlier_method=_env_str("LEARNING_OUTLIER_METHOD", base.outlier_method),
        ensemble_method=_env_str("LEARNING_ENSEMBLE_METHOD", base.ensemble_method),
        min_models=_env_int("LEARNING_MIN_MODELS", base.min_models),
        member_confidence_floor=_env_float("LEARNING_MEMBER_CONFIDENCE", base.member_confidence_floor),
        half_life_days=_env_float("LEARNING_HALF_LIFE_DAYS", base.half_life_days),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Console logging for scripts. The library itself never calls this."""
    level_name = (level or os.getenv("LEARNING_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
