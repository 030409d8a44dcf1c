"""
Biomarker scoring module.

This package turns acoustic features into stress and fatigue metrics:
1. Recording quality (how much the result can be trusted)
2. Threshold-based stress/fatigue scores (0-100) with driver strings
3. Per-user personalization (voice baseline, self-report calibration)
4. Burnout risk forecasting from check-in history

All scores are:
- Interpretable (0-100 scale, higher = more stress / more fatigue)
- Explainable (versioned threshold table, see thresholds.py)
- Non-diagnostic (wellness check-in signal, not a medical measurement)
"""

from .thresholds import THRESHOLDS_VERSION, stress_level, fatigue_level
from .quality import VoiceDataQuality, compute_voice_data_quality
from .calibration import (
    BiomarkerCalibration,
    CalibrationRepository,
    CheckInSelfReport,
    VoiceBaseline,
    apply_calibration,
    update_from_self_report,
)
from .biomarkers import BiomarkerScorer, VoiceMetrics, BiomarkerExplanations
from .forecasting import BurnoutPrediction, TrendPoint, predict_burnout_risk

__all__ = [
    'THRESHOLDS_VERSION',
    'stress_level',
    'fatigue_level',
    'VoiceDataQuality',
    'compute_voice_data_quality',
    'BiomarkerCalibration',
    'CalibrationRepository',
    'CheckInSelfReport',
    'VoiceBaseline',
    'apply_calibration',
    'update_from_self_report',
    'BiomarkerScorer',
    'VoiceMetrics',
    'BiomarkerExplanations',
    'BurnoutPrediction',
    'TrendPoint',
    'predict_burnout_risk',
]
