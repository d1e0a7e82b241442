"""
Statistical Learning Loop Controller
====================================
Turns a noisy, irregular history of training sessions into a cleaned
dataset, a trend characterisation, several independently trained models
and one ensembled forecast with an uncertainty band, plus narrated
recommendations and insights.

Stages (strictly linear, one pass per call):
  1 Preprocessing        modified z-score outlier removal on the target
  2 Feature engineering  11-wide feature vector + recency weight
  3 Trend analysis       Mann-Kendall + Sen's slope on the clean target
  4 Model fitting        time-weighted least squares, sequential
                         Bayesian posterior, Holt smoothing, adaptive MA
  5 Ensemble assembly    regression + Bayesian always; time-series
                         members only above the confidence floor
  6 Prediction           ensemble forecast for the next session
  7 Narration            recommendations + insights

The only branch is the early exit after stage 1: fewer than
``min_clean_points`` clean sessions returns the insufficient_data
sentinel and an empty state.

The engine is stateless.  Anything that must survive between runs (past
residuals for drift detection, per-member errors for adaptive weighting)
is passed in explicitly by the caller and never stored here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from analytics.bayesian import (
    BayesianModel,
    batch_update_bayesian_model,
    bayesian_predict,
    calculate_model_confidence,
    detect_model_drift,
    initialize_bayesian_model,
)
from analytics.ensemble import (
    Ensemble,
    EnsembleMember,
    EnsemblePrediction,
    MemberPerformance,
    create_ensemble,
    ensemble_predict,
    sentinel_prediction,
)
from analytics.features import (
    FEATURE_NAMES,
    TrainingData,
    chronological_order,
    engineer_features,
    get_target_value,
)
from analytics.forecasting import ForecastResult, adaptive_moving_average, triple_exponential_smoothing
from analytics.outliers import DataQualityReport, generate_data_quality_report
from analytics.regression import (
    DataPoint,
    RegressionModel,
    calculate_metrics,
    fit_time_weighted_regression,
    predict_with_model,
)
from analytics.trend import STABLE_TREND, TimeSeriesPoint, TrendAnalysis, detect_trend
from pipeline.narration import (
    INSUFFICIENT_DATA_INSIGHT,
    INSUFFICIENT_DATA_RECOMMENDATION,
    generate_insights,
    generate_recommendations,
)
from constants import TARGET_VARIABLES
from settings import LoopOptions, load_options

log = logging.getLogger("learning_loop")

# Number of trailing in-sample predictions reported back to the caller
RECENT_PREDICTION_COUNT = 5


class LoopStage(str, Enum):
    PREPROCESSING = "preprocessing"
    FEATURE_ENGINEERING = "feature_engineering"
    TREND_ANALYSIS = "trend_analysis"
    MODEL_FITTING = "model_fitting"
    ENSEMBLE_ASSEMBLY = "ensemble_assembly"
    PREDICTION = "prediction"
    NARRATION = "narration"
    DONE = "done"


@dataclass(frozen=True)
class PerformanceSummary:
    mae: float = 0.0
    mse: float = 0.0
    r2: float = 0.0
    confidence: float = 0.0


@dataclass(frozen=True)
class RecentPrediction:
    timestamp: Optional[datetime]
    predicted: float
    actual: Optional[float]
    error: Optional[float]


@dataclass(frozen=True)
class LearningState:
    data_quality: DataQualityReport
    trend_analysis: TrendAnalysis
    regression_model: Optional[RegressionModel]
    bayesian_model: Optional[BayesianModel]
    ensemble: Optional[Ensemble]
    performance: PerformanceSummary
    observation_count: int
    stages: Tuple[LoopStage, ...] = ()
    recent_predictions: Tuple[RecentPrediction, ...] = ()


@dataclass(frozen=True)
class LearningLoopResult:
    state: LearningState
    prediction: EnsemblePrediction
    recommendations: List[str] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)


class _MemberBuilder:
    """Accumulates ensemble members; the inclusion rule lives only here."""

    def __init__(self, confidence_floor: float):
        self.confidence_floor = confidence_floor
        self.members: List[EnsembleMember] = []

    def add(self, member: EnsembleMember) -> None:
        self.members.append(member)

    def add_forecast(self, member_id: str, name: str, forecast: ForecastResult) -> bool:
        if not forecast.predictions or forecast.confidence <= self.confidence_floor:
            log.info("   Skipping %s (confidence %.2f <= %.2f)",
                     member_id, forecast.confidence, self.confidence_floor)
            return False
        self.members.append(EnsembleMember(
            id=member_id,
            name=name,
            type="time_series",
            weight=forecast.confidence,
            performance=MemberPerformance(r2=forecast.confidence, recent_accuracy=forecast.confidence),
            predictions=(forecast.predictions[0],),
            confidence=forecast.confidence,
        ))
        return True


class LearningLoopController:
    """Runs the full clean → featurize → fit → ensemble → narrate cycle."""

    def __init__(self, options: Optional[LoopOptions] = None):
        self.options = options or load_options()

    # ─── MAIN ENTRY ─────────────────────────────────────────────

    def run(self, historical_data: Sequence[TrainingData], target_variable: str = "distance",
            as_of: Optional[datetime] = None,
            recent_residuals: Optional[Sequence[float]] = None,
            recent_errors: Optional[Mapping[str, Sequence[float]]] = None) -> LearningLoopResult:
        """
        Parameters
        ----------
        historical_data : list of TrainingData
            Sessions in any order.  Outlier indices refer to this order;
            models, forecasts and the next-session features follow the
            session timestamps.
        target_variable : "distance" | "fatigue" | "readiness"
        as_of : datetime, optional
            Reference time for recency weights (default: latest session).
        recent_residuals : list of float, optional
            Residuals persisted by the caller from earlier runs; enables
            drift detection.  Without them drift is never reported.
        recent_errors : {member_id: [abs errors]}, optional
            Per-member error history for the adaptive ensemble strategy.
        """
        opts = self.options
        if target_variable not in TARGET_VARIABLES:
            raise ValueError(f"Unknown target variable: {target_variable!r} (expected one of {TARGET_VARIABLES})")
        stages: List[LoopStage] = []

        log.info("Learning loop: %d sessions, target=%s", len(historical_data), target_variable)

        log.info("Stage 1/7: Preprocessing...")
        stages.append(LoopStage.PREPROCESSING)
        clean, quality = self._stage1_preprocess(historical_data, target_variable)

        if len(clean) < opts.min_clean_points:
            log.warning("   Only %d clean sessions (need >= %d) - returning insufficient_data",
                        len(clean), opts.min_clean_points)
            stages.append(LoopStage.DONE)
            return self._insufficient_data(quality, tuple(stages))

        log.info("Stage 2/7: Feature engineering...")
        stages.append(LoopStage.FEATURE_ENGINEERING)
        points = engineer_features(clean, target_variable, as_of)
        order = chronological_order([o.timestamp for o in clean])
        clean = [clean[i] for i in order]
        points = [points[i] for i in order]

        log.info("Stage 3/7: Trend analysis...")
        stages.append(LoopStage.TREND_ANALYSIS)
        series = [TimeSeriesPoint(o.timestamp, get_target_value(o, target_variable)) for o in clean]
        trend = detect_trend(series)

        log.info("Stage 4/7: Model fitting...")
        stages.append(LoopStage.MODEL_FITTING)
        regression, bayesian, forecasts = self._stage4_fit(points, series, as_of)

        log.info("Stage 5/7: Ensemble assembly...")
        stages.append(LoopStage.ENSEMBLE_ASSEMBLY)
        ensemble = self._stage5_assemble(points, regression, bayesian, forecasts)

        log.info("Stage 6/7: Prediction...")
        stages.append(LoopStage.PREDICTION)
        prediction = ensemble_predict(ensemble, recent_errors)

        log.info("Stage 7/7: Narration...")
        stages.append(LoopStage.NARRATION)
        drift = detect_model_drift(bayesian, recent_residuals or ()) if bayesian is not None else None
        recommendations = generate_recommendations(trend, quality, prediction, drift)
        insights = generate_insights(len(clean), trend, quality, regression, bayesian, FEATURE_NAMES)
        stages.append(LoopStage.DONE)

        state = LearningState(
            data_quality=quality,
            trend_analysis=trend,
            regression_model=regression,
            bayesian_model=bayesian,
            ensemble=ensemble,
            performance=PerformanceSummary(
                mae=regression.mae,
                mse=regression.mse,
                r2=regression.r2_score,
                confidence=prediction.confidence,
            ),
            observation_count=len(clean),
            stages=tuple(stages),
            recent_predictions=self._recent_predictions(points, regression),
        )

        log.info(
            "\n   LEARNING DIGEST (%d sessions)\n"
            "   Outliers removed   : %d (%.1f%%)\n"
            "   Trend              : %s (p=%.3f)\n"
            "   Regression R²      : %.3f\n"
            "   Ensemble members   : %d\n"
            "   Prediction         : %.2f ± %.2f (%s)",
            len(clean),
            len(quality.outlier_indices),
            quality.outlier_percentage,
            trend.direction,
            trend.p_value,
            regression.r2_score,
            len(ensemble.members),
            prediction.value,
            prediction.uncertainty,
            prediction.method,
        )

        return LearningLoopResult(
            state=state,
            prediction=prediction,
            recommendations=recommendations,
            insights=insights,
        )

    # ─── STAGES ─────────────────────────────────────────────────

    def _stage1_preprocess(self, data: Sequence[TrainingData],
                           target_variable: str) -> Tuple[List[TrainingData], DataQualityReport]:
        """Drop sessions whose target value is an outlier; keep input order."""
        targets = [get_target_value(d, target_variable) for d in data]
        quality = generate_data_quality_report(targets, self.options.outlier_method)
        flagged = set(quality.outlier_indices)
        clean = [d for i, d in enumerate(data) if i not in flagged]
        log.info("   %d/%d sessions kept", len(clean), len(data))
        return clean, quality

    def _stage4_fit(self, points: List[DataPoint], series: List[TimeSeriesPoint],
                    as_of: Optional[datetime]):
        opts = self.options
        regression = fit_time_weighted_regression(
            points, half_life=opts.half_life_days, as_of=as_of, feature_names=FEATURE_NAMES,
        )

        bayesian = None
        if opts.include_bayesian:
            bayesian = batch_update_bayesian_model(initialize_bayesian_model(len(FEATURE_NAMES)), points)

        forecasts: Dict[str, ForecastResult] = {}
        if opts.include_time_series:
            forecasts["exponential_smoothing"] = triple_exponential_smoothing(
                series, 0.3, 0.1, opts.forecast_horizon)
            forecasts["moving_average"] = adaptive_moving_average(series, opts.forecast_horizon)

        log.info("   Regression R²=%.3f, Bayesian obs=%d, %d forecasts",
                 regression.r2_score, bayesian.observations if bayesian else 0, len(forecasts))
        return regression, bayesian, forecasts

    def _stage5_assemble(self, points: List[DataPoint], regression: RegressionModel,
                         bayesian: Optional[BayesianModel],
                         forecasts: Mapping[str, ForecastResult]) -> Ensemble:
        opts = self.options
        latest = points[-1].features
        builder = _MemberBuilder(opts.member_confidence_floor)

        builder.add(EnsembleMember(
            id="regression_time_weighted",
            name="Time-Weighted Regression",
            type="regression",
            weight=1.0,
            performance=MemberPerformance(
                mae=regression.mae,
                mse=regression.mse,
                r2=regression.r2_score,
                recent_accuracy=regression.r2_score,
            ),
            predictions=(predict_with_model(regression, latest),),
            confidence=regression.r2_score,
        ))

        if bayesian is not None:
            confidence = calculate_model_confidence(bayesian)
            fitted = [bayesian_predict(bayesian, p.features).mean for p in points]
            _, mse, mae = calculate_metrics([p.target for p in points], fitted)
            builder.add(EnsembleMember(
                id="bayesian_adaptive",
                name="Bayesian Adaptive Model",
                type="bayesian",
                weight=1.0,
                performance=MemberPerformance(mae=mae, mse=mse, r2=confidence, recent_accuracy=confidence),
                predictions=(bayesian_predict(bayesian, latest).mean,),
                confidence=confidence,
            ))

        if "exponential_smoothing" in forecasts:
            builder.add_forecast("exponential_smoothing", "Exponential Smoothing",
                                 forecasts["exponential_smoothing"])
        if "moving_average" in forecasts:
            builder.add_forecast("moving_average", "Adaptive Moving Average", forecasts["moving_average"])

        log.info("   %d ensemble members: %s", len(builder.members),
                 ", ".join(m.id for m in builder.members))
        return create_ensemble(builder.members, method=opts.ensemble_method, min_models=opts.min_models)

    # ─── HELPERS ────────────────────────────────────────────────

    @staticmethod
    def _recent_predictions(points: Sequence[DataPoint],
                            regression: RegressionModel) -> Tuple[RecentPrediction, ...]:
        """In-sample fit on the trailing sessions; residuals a caller may persist."""
        recent = []
        for p in points[-RECENT_PREDICTION_COUNT:]:
            predicted = predict_with_model(regression, p.features)
            recent.append(RecentPrediction(p.timestamp, predicted, p.target, p.target - predicted))
        return tuple(recent)

    def _insufficient_data(self, quality: DataQualityReport,
                           stages: Tuple[LoopStage, ...]) -> LearningLoopResult:
        state = LearningState(
            data_quality=quality,
            trend_analysis=STABLE_TREND,
            regression_model=None,
            bayesian_model=None,
            ensemble=None,
            performance=PerformanceSummary(),
            observation_count=0,
            stages=stages,
        )
        return LearningLoopResult(
            state=state,
            prediction=sentinel_prediction("insufficient_data"),
            recommendations=[INSUFFICIENT_DATA_RECOMMENDATION.format(n=self.options.min_clean_points)],
            insights=[INSUFFICIENT_DATA_INSIGHT],
        )


def run_learning_loop(historical_data: Sequence[TrainingData], target_variable: str = "distance",
                      options: Optional[LoopOptions] = None, **kwargs) -> LearningLoopResult:
    """Module-level entry point; see LearningLoopController.run for kwargs."""
    return LearningLoopController(options).run(historical_data, target_variable, **kwargs)


def run_quick_simulation(historical_data: Sequence[TrainingData], target_variable: str = "distance",
                         options: Optional[LoopOptions] = None, **kwargs) -> LearningLoopResult:
    """Lightweight variant: no Bayesian member, plain weighted average, one model suffices."""
    base = options or load_options()
    quick = base.with_overrides(include_bayesian=False, ensemble_method="weighted_average", min_models=1)
    return LearningLoopController(quick).run(historical_data, target_variable, **kwargs)
