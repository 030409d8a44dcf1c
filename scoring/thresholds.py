"""
Versioned threshold table for acoustic stress/fatigue scoring.

Each scored feature maps to an intensity in [0, 1] by linear
interpolation between a "normal" anchor (intensity 0) and a "high"
anchor (intensity 1). Anchors may be descending (e.g. slow speech raises
fatigue). Axis score = 100 * sum(weight * intensity); weights per axis
sum to 1.0.

Score bands (shared by scorer, fusion, calibration and tests):

    score < 35          low       / rested
    35 <= score < 55    moderate  / normal
    55 <= score < 75    elevated  / tired
    score >= 75         high      / exhausted

Any change to anchors, weights or bands must bump THRESHOLDS_VERSION.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

THRESHOLDS_VERSION = "1.0"


@dataclass(frozen=True)
class FeatureThreshold:
    """Linear ramp for one feature on one axis."""
    feature: str
    normal: float
    high: float
    weight: float
    label: str
    baseline_label: str

    def intensity(self, value: float) -> float:
        span = self.high - self.normal
        if span == 0:
            return 0.0
        return min(1.0, max(0.0, (value - self.normal) / span))


STRESS_THRESHOLDS: Tuple[FeatureThreshold, ...] = (
    FeatureThreshold('speech_rate', 4.0, 5.5, 0.25,
                     'Fast speech rate', 'Faster speech than your baseline'),
    FeatureThreshold('pitch_std_dev', 20.0, 40.0, 0.25,
                     'Variable pitch', 'More pitch variation than your baseline'),
    FeatureThreshold('pause_ratio', 0.25, 0.05, 0.20,
                     'Few pauses', 'Fewer pauses than your baseline'),
    FeatureThreshold('rms', 0.10, 0.30, 0.10,
                     'Raised voice energy', 'Louder voice than your baseline'),
    FeatureThreshold('spectral_flux', 0.10, 0.25, 0.10,
                     'Rapid spectral changes', 'More vocal tension than your baseline'),
    FeatureThreshold('zcr', 0.04, 0.10, 0.10,
                     'Tense voice quality', 'Sharper voice quality than your baseline'),
)

FATIGUE_THRESHOLDS: Tuple[FeatureThreshold, ...] = (
    FeatureThreshold('speech_rate', 3.5, 2.5, 0.30,
                     'Slow speech rate', 'Slower speech than your baseline'),
    FeatureThreshold('rms', 0.12, 0.05, 0.25,
                     'Low voice energy', 'Quieter voice than your baseline'),
    FeatureThreshold('pause_ratio', 0.25, 0.45, 0.20,
                     'Frequent pauses', 'More pauses than your baseline'),
    FeatureThreshold('spectral_centroid', 2000.0, 1200.0, 0.15,
                     'Dull vocal tone', 'Duller tone than your baseline'),
    FeatureThreshold('pitch_range', 80.0, 30.0, 0.10,
                     'Monotone pitch', 'Flatter pitch than your baseline'),
)

# Baseline-relative scoring: feature delta (toward the axis) that counts
# as full intensity, and axis weights.
STRESS_DELTA_SCALES: Dict[str, Tuple[float, float, int]] = {
    # feature: (full-scale delta, weight, direction)
    'speech_rate': (0.9, 0.30, 1),
    'pitch_std_dev': (15.0, 0.20, 1),
    'rms': (0.06, 0.20, 1),
    'spectral_flux': (0.05, 0.15, 1),
    'zcr': (0.03, 0.15, 1),
}

FATIGUE_DELTA_SCALES: Dict[str, Tuple[float, float, int]] = {
    'speech_rate': (0.8, 0.30, -1),
    'rms': (0.05, 0.30, -1),
    'pause_ratio': (0.12, 0.25, 1),
    'spectral_centroid': (400.0, 0.15, -1),
}

# Share of the final score taken from the baseline-relative score
STRESS_RELATIVE_WEIGHT = 0.65
FATIGUE_RELATIVE_WEIGHT = 0.70

# Driver selection
DRIVER_MIN_INTENSITY = 0.25
MAX_DRIVERS = 3

# Band cut points
BAND_MODERATE = 35.0
BAND_ELEVATED = 55.0
BAND_HIGH = 75.0

STRESS_LEVELS: List[str] = ['low', 'moderate', 'elevated', 'high']
FATIGUE_LEVELS: List[str] = ['rested', 'normal', 'tired', 'exhausted']

# Quality
MIN_SPEECH_SECONDS = 3.0
BASELINE_MIN_SPEECH_SECONDS = 8.0


def band_index(score: float) -> int:
    """Index into STRESS_LEVELS / FATIGUE_LEVELS for a 0-100 score."""
    if score >= BAND_HIGH:
        return 3
    if score >= BAND_ELEVATED:
        return 2
    if score >= BAND_MODERATE:
        return 1
    return 0


def stress_level(score: float) -> str:
    return STRESS_LEVELS[band_index(score)]


def fatigue_level(score: float) -> str:
    return FATIGUE_LEVELS[band_index(score)]
