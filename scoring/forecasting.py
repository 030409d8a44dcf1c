"""
Burnout risk forecasting from check-in history.

Looks at the trend of past stress/fatigue scores and estimates the risk
of burnout 3-7 days ahead. Each check-in contributes one "burden" value,
the mean of its stress and fatigue scores.

Risk score (0-100):
    0.4 * recent average (last 3 check-ins)
  + min(3 * slope, 30)          if the burden is rising
  + min(0.3 * volatility, 20)   standard deviation of the burden
  + 10                          if recent average exceeds overall by > 10

Slope is the least-squares slope in points per check-in.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Trend direction (points per check-in)
SLOPE_DECLINING = 2.0
SLOPE_IMPROVING = -2.0
SLOPE_RAPID = 5.0
SLOPE_MODERATE = 2.0
SLOPE_STRONG = 3.0

# Risk bands
RISK_CRITICAL = 75
RISK_HIGH = 55
RISK_MODERATE = 35

# Days until potential burnout
DAYS_RAPID_DECLINE = 3
DAYS_MODERATE_DECLINE = 5
DAYS_SLOW_DECLINE = 7

# Risk weights
RECENT_AVERAGE_WEIGHT = 0.4
SLOPE_WEIGHT = 3.0
UPWARD_TREND_MAX = 30.0
VOLATILITY_WEIGHT = 0.3
VOLATILITY_MAX = 20.0
RECENT_WORSE_POINTS = 10.0
RECENT_VS_OVERALL_DIFF = 10.0

# Contributing factors
STRESS_ELEVATED = 60.0
FATIGUE_ELEVATED = 60.0
VOLATILITY_HIGH = 15.0
BURDEN_HIGH = 65.0

# Confidence
CONFIDENCE_BASE = 0.5
DATA_POINT_BOOSTS = ((14, 0.3), (7, 0.2), (3, 0.1))
CONFIDENCE_PENALTY_MINIMAL_DATA = -0.2
VOLATILITY_LOW = 10.0
VOLATILITY_CONCERNING = 20.0
CONFIDENCE_BOOST_LOW_VOLATILITY = 0.15
CONFIDENCE_PENALTY_HIGH_VOLATILITY = -0.1
CONFIDENCE_BOOST_STRONG_TREND = 0.05

RECENT_WINDOW = 3


@dataclass(frozen=True)
class TrendPoint:
    """One check-in's scores, dated YYYY-MM-DD."""
    date: str
    stress_score: float
    fatigue_score: float

    @property
    def burden(self) -> float:
        return (self.stress_score + self.fatigue_score) / 2.0


@dataclass(frozen=True)
class TrendAnalysis:
    slope: float
    volatility: float
    recent_average: float
    overall_average: float


@dataclass
class BurnoutPrediction:
    risk_score: int
    risk_level: str  # 'low', 'moderate', 'high', 'critical'
    predicted_days: int
    trend: str  # 'improving', 'stable', 'declining'
    confidence: float
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'risk_score': self.risk_score,
            'risk_level': self.risk_level,
            'predicted_days': self.predicted_days,
            'trend': self.trend,
            'confidence': self.confidence,
            'factors': list(self.factors),
        }


def _point(scored, analyzed_at) -> TrendPoint:
    return TrendPoint(
        date=str(analyzed_at or '').split('T')[0],
        stress_score=float(scored.stress_score),
        fatigue_score=float(scored.fatigue_score),
    )


def sessions_to_trend_data(sessions: Iterable) -> List[TrendPoint]:
    """
    Convert session composites (SessionAcousticMetrics) to trend points.

    Missing sessions (None) are skipped. Blended sessions contribute
    their fused scores.
    """
    return [_point(s, s.analyzed_at) for s in sessions if s is not None]


def recordings_to_trend_data(recordings: Iterable) -> List[TrendPoint]:
    """Convert check-in results to trend points, skipping unscored recordings."""
    return [
        _point(r.metrics, r.metrics.analyzed_at)
        for r in recordings
        if getattr(r, 'metrics', None) is not None
    ]


def analyze_trend(points: Sequence[TrendPoint]) -> TrendAnalysis:
    burden = np.array([p.burden for p in points], dtype=np.float64)

    if len(burden) >= 2:
        slope = float(np.polyfit(np.arange(len(burden)), burden, 1)[0])
    else:
        slope = 0.0

    return TrendAnalysis(
        slope=slope,
        volatility=float(np.std(burden)),
        recent_average=float(np.mean(burden[-RECENT_WINDOW:])),
        overall_average=float(np.mean(burden)),
    )


def trend_direction(slope: float) -> str:
    if slope > SLOPE_DECLINING:
        return 'declining'
    if slope < SLOPE_IMPROVING:
        return 'improving'
    return 'stable'


def risk_level(score: float) -> str:
    if score >= RISK_CRITICAL:
        return 'critical'
    if score >= RISK_HIGH:
        return 'high'
    if score >= RISK_MODERATE:
        return 'moderate'
    return 'low'


def calculate_risk_score(analysis: TrendAnalysis) -> int:
    risk = analysis.recent_average * RECENT_AVERAGE_WEIGHT

    if analysis.slope > 0:
        risk += min(analysis.slope * SLOPE_WEIGHT, UPWARD_TREND_MAX)

    risk += min(analysis.volatility * VOLATILITY_WEIGHT, VOLATILITY_MAX)

    if analysis.recent_average > analysis.overall_average + RECENT_VS_OVERALL_DIFF:
        risk += RECENT_WORSE_POINTS

    return int(min(100, max(0, round(risk))))


def estimate_days_until_burnout(analysis: TrendAnalysis, risk_score: int) -> int:
    if risk_score >= RISK_CRITICAL or analysis.slope > SLOPE_RAPID:
        return DAYS_RAPID_DECLINE
    if analysis.slope > SLOPE_MODERATE:
        return DAYS_MODERATE_DECLINE
    return DAYS_SLOW_DECLINE


def identify_factors(analysis: TrendAnalysis, points: Sequence[TrendPoint]) -> List[str]:
    recent = points[-RECENT_WINDOW:]
    recent_stress = float(np.mean([p.stress_score for p in recent]))
    recent_fatigue = float(np.mean([p.fatigue_score for p in recent]))

    factors = []
    if recent_stress > STRESS_ELEVATED:
        factors.append("Elevated stress levels")
    if recent_fatigue > FATIGUE_ELEVATED:
        factors.append("High fatigue levels")
    if analysis.slope > SLOPE_DECLINING:
        factors.append("Declining trend over time")
    if analysis.volatility > VOLATILITY_HIGH:
        factors.append("Inconsistent wellness patterns")
    if analysis.recent_average > BURDEN_HIGH:
        factors.append("Sustained high stress/fatigue")

    return factors or ["Overall wellness within normal range"]


def forecast_confidence(point_count: int, analysis: TrendAnalysis) -> float:
    confidence = CONFIDENCE_BASE

    for min_points, boost in DATA_POINT_BOOSTS:
        if point_count >= min_points:
            confidence += boost
            break
    else:
        confidence += CONFIDENCE_PENALTY_MINIMAL_DATA

    if analysis.volatility < VOLATILITY_LOW:
        confidence += CONFIDENCE_BOOST_LOW_VOLATILITY
    elif analysis.volatility > VOLATILITY_CONCERNING:
        confidence += CONFIDENCE_PENALTY_HIGH_VOLATILITY

    if abs(analysis.slope) > SLOPE_STRONG:
        confidence += CONFIDENCE_BOOST_STRONG_TREND

    return round(max(0.1, min(1.0, confidence)), 3)


def predict_burnout_risk(points: Sequence[TrendPoint]) -> BurnoutPrediction:
    """
    Predict burnout risk from chronologically ordered trend points
    (ideally 7-14 days of check-ins).

    Fewer than two points cannot show a trend and yield a low-risk,
    low-confidence prediction.
    """
    points = list(points)
    if len(points) < 2:
        return BurnoutPrediction(
            risk_score=0,
            risk_level='low',
            predicted_days=DAYS_SLOW_DECLINE,
            trend='stable',
            confidence=0.1,
            factors=["Insufficient data for prediction"],
        )

    analysis = analyze_trend(points)
    score = calculate_risk_score(analysis)

    prediction = BurnoutPrediction(
        risk_score=score,
        risk_level=risk_level(score),
        predicted_days=estimate_days_until_burnout(analysis, score),
        trend=trend_direction(analysis.slope),
        confidence=forecast_confidence(len(points), analysis),
        factors=identify_factors(analysis, points),
    )

    logger.info(
        f"Burnout forecast over {len(points)} check-ins: risk={prediction.risk_score} "
        f"({prediction.risk_level}), trend={prediction.trend}, slope={analysis.slope:.2f}"
    )
    return prediction
