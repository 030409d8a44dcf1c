"""
Per-user personalization: voice baseline and self-report calibration.

Calibration model (per axis):
    calibrated = clamp(raw * scale + bias, 0, 100)

After each self-report the prediction error (target - calibrated) nudges
bias and scale by a small, confidence-weighted step:
    bias  += BIAS_LR  * confidence * error
    scale += SCALE_LR * confidence * (error / 100) * (raw / 100)
The combined step closes at most BIAS_LR + SCALE_LR of the error, so an
update never overshoots the self-reported value. Bias and scale are
hard-clamped to their bounds after every update.

CalibrationRepository is the only code that reads or writes the settings
record; its per-key lock makes each read-modify-write atomic.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from audio_pipeline.features import AudioFeatures
from exceptions import BaselineTooShort, CalibrationWriteFailed
from scoring.thresholds import BASELINE_MIN_SPEECH_SECONDS
from utils.settings_store import DEFAULT_SETTINGS_KEY, SettingsStore

logger = logging.getLogger(__name__)

BIAS_LR = 0.15
SCALE_LR = 0.10
BIAS_BOUND = 25.0
SCALE_MIN = 0.75
SCALE_MAX = 1.25

BASELINE_FIELD = 'voice_baseline'
CALIBRATION_FIELD = 'voice_biomarker_calibration'


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


@dataclass(frozen=True)
class VoiceBaseline:
    """Reference recording of the user's normal voice. Replaced wholesale."""
    features: AudioFeatures
    recorded_at: str
    prompt_id: str
    speech_seconds: float

    def to_dict(self) -> Dict:
        return {
            'features': self.features.to_dict(),
            'recorded_at': self.recorded_at,
            'prompt_id': self.prompt_id,
            'speech_seconds': self.speech_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'VoiceBaseline':
        return cls(
            features=AudioFeatures.from_dict(data['features']),
            recorded_at=data['recorded_at'],
            prompt_id=data.get('prompt_id', ''),
            speech_seconds=float(data['speech_seconds']),
        )


def create_baseline(
    features: AudioFeatures,
    speech_seconds: float,
    prompt_id: str = 'default',
    min_speech_seconds: float = BASELINE_MIN_SPEECH_SECONDS
) -> VoiceBaseline:
    """
    Build a baseline from a processed recording.

    Raises:
        BaselineTooShort: If the recording has less than min_speech_seconds
    """
    if speech_seconds < min_speech_seconds:
        raise BaselineTooShort(speech_seconds, min_speech_seconds)
    return VoiceBaseline(
        features=features,
        recorded_at=_utc_now(),
        prompt_id=prompt_id,
        speech_seconds=float(speech_seconds),
    )


@dataclass(frozen=True)
class BiomarkerCalibration:
    """Learned per-user correction for acoustic scores."""
    stress_bias: float = 0.0
    fatigue_bias: float = 0.0
    stress_scale: float = 1.0
    fatigue_scale: float = 1.0
    sample_count: int = 0
    updated_at: Optional[str] = None

    def bias(self, dimension: str) -> float:
        return self.stress_bias if dimension == 'stress' else self.fatigue_bias

    def scale(self, dimension: str) -> float:
        return self.stress_scale if dimension == 'stress' else self.fatigue_scale

    def to_dict(self) -> Dict:
        return {
            'stress_bias': self.stress_bias,
            'fatigue_bias': self.fatigue_bias,
            'stress_scale': self.stress_scale,
            'fatigue_scale': self.fatigue_scale,
            'sample_count': self.sample_count,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'BiomarkerCalibration':
        return cls(
            stress_bias=float(data.get('stress_bias', 0.0)),
            fatigue_bias=float(data.get('fatigue_bias', 0.0)),
            stress_scale=float(data.get('stress_scale', 1.0)),
            fatigue_scale=float(data.get('fatigue_scale', 1.0)),
            sample_count=int(data.get('sample_count', 0)),
            updated_at=data.get('updated_at'),
        )


@dataclass(frozen=True)
class CheckInSelfReport:
    """User's own stress/fatigue rating (0-100) for a check-in."""
    stress_score: float
    fatigue_score: float
    reported_at: str

    def __post_init__(self):
        for name in ('stress_score', 'fatigue_score'):
            value = getattr(self, name)
            if not 0.0 <= value <= 100.0:
                raise ValueError(f"{name} must be within [0, 100], got {value}")


def apply_calibration(
    raw_score: float,
    calibration: Optional[BiomarkerCalibration],
    dimension: str = 'stress'
) -> float:
    """clamp(raw * scale + bias, 0, 100); identity when calibration is None."""
    if dimension not in ('stress', 'fatigue'):
        raise ValueError(f"Unknown dimension: {dimension}")
    if calibration is None:
        return _clamp(float(raw_score), 0.0, 100.0)
    calibrated = raw_score * calibration.scale(dimension) + calibration.bias(dimension)
    return _clamp(calibrated, 0.0, 100.0)


def _raw_score(acoustic, dimension: str) -> float:
    raw = getattr(acoustic, f'raw_{dimension}_score', None)
    if raw is None:
        raw = getattr(acoustic, f'{dimension}_score')
    return float(raw)


def update_from_self_report(
    acoustic,
    self_report: CheckInSelfReport,
    previous: Optional[BiomarkerCalibration] = None,
    bias_lr: float = BIAS_LR,
    scale_lr: float = SCALE_LR
) -> BiomarkerCalibration:
    """
    Move calibration toward the user's self-report.

    Args:
        acoustic: VoiceMetrics (or any object with raw_*/*_score and
            confidence) from the same check-in
        self_report: User rating
        previous: Calibration in effect (identity if None)

    Returns:
        New calibration with bounds enforced and sample_count + 1
    """
    previous = previous or BiomarkerCalibration()
    confidence = _clamp(float(getattr(acoustic, 'confidence', 1.0)), 0.0, 1.0)

    updated = {}
    for dimension in ('stress', 'fatigue'):
        raw = _raw_score(acoustic, dimension)
        target = float(getattr(self_report, f'{dimension}_score'))
        predicted = apply_calibration(raw, previous, dimension)
        error = target - predicted

        bias = previous.bias(dimension) + bias_lr * confidence * error
        scale = previous.scale(dimension) + scale_lr * confidence * (error / 100.0) * (raw / 100.0)

        updated[f'{dimension}_bias'] = _clamp(bias, -BIAS_BOUND, BIAS_BOUND)
        updated[f'{dimension}_scale'] = _clamp(scale, SCALE_MIN, SCALE_MAX)

    calibration = BiomarkerCalibration(
        sample_count=previous.sample_count + 1,
        updated_at=_utc_now(),
        **updated
    )

    logger.info(
        f"Calibration updated (n={calibration.sample_count}): "
        f"stress bias={calibration.stress_bias:+.2f} scale={calibration.stress_scale:.3f}, "
        f"fatigue bias={calibration.fatigue_bias:+.2f} scale={calibration.fatigue_scale:.3f}"
    )
    return calibration


@dataclass(frozen=True)
class PersonalizationState:
    baseline: Optional[VoiceBaseline]
    calibration: Optional[BiomarkerCalibration]


class CalibrationRepository:
    """
    Single access point for the baseline/calibration settings record.

    Usage:
        repo = CalibrationRepository(SqliteSettingsStore("data/settings.db"))
        state = repo.load()
        repo.update_from_self_report(metrics, report)

    Writes go through store.update(key, patch) and fall back to
    store.put when no record exists yet. Failed writes raise
    CalibrationWriteFailed and leave the in-memory value unchanged.
    """

    # One lock per (store, key) record
    _locks: Dict[Tuple[int, str], threading.RLock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, store: SettingsStore, key: str = DEFAULT_SETTINGS_KEY):
        self.store = store
        self.key = key
        self.current_calibration: Optional[BiomarkerCalibration] = None
        self.current_baseline: Optional[VoiceBaseline] = None

        with self._locks_guard:
            self._lock = self._locks.setdefault((id(store), key), threading.RLock())

    def load(self) -> PersonalizationState:
        """Read baseline and calibration (None for missing or unreadable parts)."""
        with self._lock:
            record = self.store.get(self.key) or {}

            baseline = self._parse(record.get(BASELINE_FIELD), VoiceBaseline.from_dict, 'baseline')
            calibration = self._parse(record.get(CALIBRATION_FIELD), BiomarkerCalibration.from_dict, 'calibration')

            self.current_baseline = baseline
            self.current_calibration = calibration
            return PersonalizationState(baseline=baseline, calibration=calibration)

    def save_baseline(self, baseline: VoiceBaseline) -> None:
        with self._lock:
            self._write({BASELINE_FIELD: baseline.to_dict()}, previous=self.current_baseline)
            self.current_baseline = baseline
        logger.info(f"Voice baseline saved ({baseline.speech_seconds:.1f}s of speech)")

    def save_calibration(self, calibration: BiomarkerCalibration) -> None:
        with self._lock:
            self._write({CALIBRATION_FIELD: calibration.to_dict()}, previous=self.current_calibration)
            self.current_calibration = calibration

    def update_from_self_report(self, acoustic, self_report: CheckInSelfReport) -> BiomarkerCalibration:
        """Atomic read-update-write of the calibration for this key."""
        with self._lock:
            previous = self.load().calibration
            calibration = update_from_self_report(acoustic, self_report, previous)
            self.save_calibration(calibration)
            return calibration

    def _write(self, patch: Dict, previous=None) -> None:
        try:
            changed = self.store.update(self.key, patch)
            if changed == 0:
                self.store.put(self.key, dict(patch))
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Settings write failed for '{self.key}': {e}")
            raise CalibrationWriteFailed(f"Could not save settings: {e}", previous=previous) from e

    def _parse(self, data, factory, what: str):
        if data is None:
            return None
        try:
            return factory(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable stored {what}: {e}")
            return None
