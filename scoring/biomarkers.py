"""
Acoustic stress and fatigue scoring.

Rule/threshold model (see scoring/thresholds.py for the versioned table):
- Each feature contributes weight * intensity to its axis
- With a personal baseline, the threshold score is blended with a
  baseline-relative score and explanations switch to baseline wording
- Optional per-user calibration is applied last; levels are always
  derived from the final score

Confidence:
    base heuristic (pause count, loudness) * VoiceDataQuality.quality
A missing quality record counts as a neutral 0.5 so unknown recordings
never look precise.
"""

import logging
import math
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from audio_pipeline.features import AudioFeatures
from scoring import thresholds as th
from scoring.calibration import BiomarkerCalibration, VoiceBaseline, apply_calibration
from scoring.quality import VoiceDataQuality, fallback_quality

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BiomarkerExplanations:
    """Driver strings per axis and the reference they were computed against."""
    mode: str  # 'threshold' or 'baseline'
    stress: Tuple[str, ...] = field(default_factory=tuple)
    fatigue: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict:
        return {'mode': self.mode, 'stress': list(self.stress), 'fatigue': list(self.fatigue)}

    @classmethod
    def from_dict(cls, data: Dict) -> 'BiomarkerExplanations':
        return cls(
            mode=data['mode'],
            stress=tuple(data.get('stress', ())),
            fatigue=tuple(data.get('fatigue', ())),
        )


@dataclass(frozen=True)
class VoiceMetrics:
    """
    Acoustic biomarker result for one recording.

    Attributes:
        stress_score: Final stress score (0-100)
        fatigue_score: Final fatigue score (0-100)
        stress_level: low / moderate / elevated / high
        fatigue_level: rested / normal / tired / exhausted
        confidence: Overall confidence (0-1)
        analyzed_at: ISO-8601 UTC timestamp
        explanations: Driver strings per axis
        quality: Recording quality used for confidence
        raw_stress_score: Score before calibration
        raw_fatigue_score: Score before calibration
    """
    stress_score: float
    fatigue_score: float
    stress_level: str
    fatigue_level: str
    confidence: float
    analyzed_at: str
    explanations: Optional[BiomarkerExplanations] = None
    quality: Optional[VoiceDataQuality] = None
    raw_stress_score: Optional[float] = None
    raw_fatigue_score: Optional[float] = None

    def to_dict(self) -> Dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data['explanations'] = self.explanations.to_dict() if self.explanations else None
        data['quality'] = self.quality.to_dict() if self.quality else None
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'VoiceMetrics':
        explanations = data.get('explanations')
        quality = data.get('quality')
        return cls(
            stress_score=float(data['stress_score']),
            fatigue_score=float(data['fatigue_score']),
            stress_level=data['stress_level'],
            fatigue_level=data['fatigue_level'],
            confidence=float(data['confidence']),
            analyzed_at=data['analyzed_at'],
            explanations=BiomarkerExplanations.from_dict(explanations) if explanations else None,
            quality=VoiceDataQuality.from_dict(quality) if quality else None,
            raw_stress_score=data.get('raw_stress_score'),
            raw_fatigue_score=data.get('raw_fatigue_score'),
        )


@dataclass(frozen=True)
class AxisScore:
    score: float
    drivers: Tuple[str, ...]


def validate_features(features: AudioFeatures) -> List[str]:
    """
    Sanity-check a feature record before scoring.

    Returns:
        List of problems (empty when the record is usable)
    """
    problems = []
    for name in ('spectral_centroid', 'spectral_flux', 'spectral_rolloff', 'rms', 'zcr',
                 'speech_rate', 'pause_ratio', 'avg_pause_duration_ms',
                 'pitch_mean', 'pitch_std_dev', 'pitch_range'):
        value = getattr(features, name)
        if not math.isfinite(value):
            problems.append(f"{name} is not finite")
        elif value < 0:
            problems.append(f"{name} is negative")

    if any(not math.isfinite(c) for c in features.mfcc):
        problems.append("mfcc contains non-finite values")
    if features.rms > 1:
        problems.append("rms above 1.0")
    if features.zcr > 1:
        problems.append("zcr above 1.0")
    if features.pause_ratio > 1:
        problems.append("pause_ratio above 1.0")
    if features.spectral_flux > 1:
        problems.append("spectral_flux above 1.0")
    if features.speech_rate > 20:
        problems.append("speech_rate above 20/s")
    if features.pause_count < 0:
        problems.append("pause_count is negative")

    return problems


def base_confidence(features: AudioFeatures) -> float:
    """Heuristic confidence from how much prosodic structure the clip has."""
    confidence = 0.7

    if features.pause_count > 10:
        confidence += 0.15
    elif features.pause_count > 5:
        confidence += 0.1
    elif features.pause_count < 3:
        confidence -= 0.1

    if features.rms < 0.05:
        confidence -= 0.2
    elif features.rms > 0.15:
        confidence += 0.1

    return max(0.0, min(1.0, confidence))


class BiomarkerScorer:
    """
    Threshold-based stress/fatigue scorer.

    Usage:
        scorer = BiomarkerScorer(config)
        metrics = scorer.score(features, quality=result.quality, baseline=baseline)
    """

    def __init__(self, config: Optional[Dict] = None):
        scoring_config = (config or {}).get('scoring', {})

        self.driver_min_intensity = scoring_config.get('driver_min_intensity', th.DRIVER_MIN_INTENSITY)
        self.max_drivers = scoring_config.get('max_drivers', th.MAX_DRIVERS)
        self.stress_relative_weight = scoring_config.get('stress_relative_weight', th.STRESS_RELATIVE_WEIGHT)
        self.fatigue_relative_weight = scoring_config.get('fatigue_relative_weight', th.FATIGUE_RELATIVE_WEIGHT)

        logger.info(f"Biomarker scorer initialized (thresholds v{th.THRESHOLDS_VERSION})")

    def score(
        self,
        features: AudioFeatures,
        quality: Optional[VoiceDataQuality] = None,
        baseline: Optional[VoiceBaseline] = None,
        calibration: Optional[BiomarkerCalibration] = None
    ) -> VoiceMetrics:
        """
        Score one recording.

        Args:
            features: Extracted acoustic features
            quality: Recording quality (neutral fallback if None)
            baseline: Personal baseline for relative scoring
            calibration: Per-user bias/scale applied to the raw scores

        Returns:
            VoiceMetrics with levels derived from the final scores

        Raises:
            ValueError: If features fail validate_features
        """
        problems = validate_features(features)
        if problems:
            raise ValueError(f"Invalid features: {', '.join(problems)}")

        if quality is None:
            quality = fallback_quality()

        stress = self._threshold_axis(features, th.STRESS_THRESHOLDS)
        fatigue = self._threshold_axis(features, th.FATIGUE_THRESHOLDS)
        mode = 'threshold'

        if baseline is not None:
            stress = self._blend_with_baseline(
                stress, features, baseline.features, th.STRESS_DELTA_SCALES,
                th.STRESS_THRESHOLDS, self.stress_relative_weight
            )
            fatigue = self._blend_with_baseline(
                fatigue, features, baseline.features, th.FATIGUE_DELTA_SCALES,
                th.FATIGUE_THRESHOLDS, self.fatigue_relative_weight
            )
            mode = 'baseline'

        raw_stress = round(stress.score, 1)
        raw_fatigue = round(fatigue.score, 1)

        final_stress = round(apply_calibration(raw_stress, calibration, 'stress'), 1)
        final_fatigue = round(apply_calibration(raw_fatigue, calibration, 'fatigue'), 1)

        confidence = base_confidence(features) * quality.quality

        metrics = VoiceMetrics(
            stress_score=final_stress,
            fatigue_score=final_fatigue,
            stress_level=th.stress_level(final_stress),
            fatigue_level=th.fatigue_level(final_fatigue),
            confidence=round(max(0.0, min(1.0, confidence)), 3),
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            explanations=BiomarkerExplanations(mode=mode, stress=stress.drivers, fatigue=fatigue.drivers),
            quality=quality,
            raw_stress_score=raw_stress,
            raw_fatigue_score=raw_fatigue,
        )

        logger.info(
            f"Scored recording: stress={metrics.stress_score:.1f} ({metrics.stress_level}), "
            f"fatigue={metrics.fatigue_score:.1f} ({metrics.fatigue_level}), "
            f"confidence={metrics.confidence:.2f}, mode={mode}"
        )

        return metrics

    def breakdown(self, features: AudioFeatures) -> Dict[str, List[Dict]]:
        """Per-feature value, intensity and contribution for both axes."""
        result = {}
        for axis, table in (('stress', th.STRESS_THRESHOLDS), ('fatigue', th.FATIGUE_THRESHOLDS)):
            rows = []
            for rule in self._active_rules(features, table):
                value = getattr(features, rule.feature)
                intensity = rule.intensity(value)
                rows.append({
                    'feature': rule.feature,
                    'value': value,
                    'intensity': intensity,
                    'contribution': 100 * rule.weight * intensity,
                    'status': _intensity_status(intensity),
                    'description': rule.label,
                })
            result[axis] = rows
        return result

    def _active_rules(self, features: AudioFeatures, table: Sequence[th.FeatureThreshold]):
        # Pitch rules mean nothing without voiced frames
        if has_pitch(features):
            return list(table)
        return [rule for rule in table if not rule.feature.startswith('pitch_')]

    def _threshold_axis(self, features: AudioFeatures, table: Sequence[th.FeatureThreshold]) -> AxisScore:
        rules = self._active_rules(features, table)
        total_weight = sum(rule.weight for rule in table)
        active_weight = sum(rule.weight for rule in rules)

        contributions = []
        weighted = 0.0
        for rule in rules:
            intensity = rule.intensity(getattr(features, rule.feature))
            weighted += rule.weight * intensity
            contributions.append((rule.label, intensity))

        # Renormalize when pitch rules were dropped
        if 0 < active_weight < total_weight:
            weighted *= total_weight / active_weight

        score = max(0.0, min(100.0, 100.0 * weighted))
        drivers = ()
        if score >= th.BAND_MODERATE:
            drivers = self._pick_drivers(contributions)
        return AxisScore(score=score, drivers=drivers)

    def _blend_with_baseline(
        self,
        absolute: AxisScore,
        features: AudioFeatures,
        reference: AudioFeatures,
        scales: Dict[str, Tuple[float, float, int]],
        table: Sequence[th.FeatureThreshold],
        relative_weight: float
    ) -> AxisScore:
        labels = {rule.feature: rule.baseline_label for rule in table}

        contributions = []
        weighted = 0.0
        for feature, (scale, weight, direction) in scales.items():
            if feature.startswith('pitch_') and not (has_pitch(features) and has_pitch(reference)):
                continue
            delta = (getattr(features, feature) - getattr(reference, feature)) * direction
            intensity = min(2.0, max(0.0, delta / scale))
            weighted += weight * intensity
            contributions.append((labels.get(feature, feature), intensity))

        relative = max(0.0, min(100.0, 20.0 + 35.0 * weighted))
        score = (1.0 - relative_weight) * absolute.score + relative_weight * relative
        return AxisScore(score=max(0.0, min(100.0, score)), drivers=self._pick_drivers(contributions))

    def _pick_drivers(self, contributions: List[Tuple[str, float]]) -> Tuple[str, ...]:
        strong = [c for c in contributions if c[1] > self.driver_min_intensity]
        strong.sort(key=lambda c: c[1], reverse=True)
        return tuple(label for label, _ in strong[:self.max_drivers])


def has_pitch(features: AudioFeatures) -> bool:
    """False when pitch tracking found no voiced frames (all pitch fields 0)."""
    return features.pitch_mean > 0 or features.pitch_std_dev > 0 or features.pitch_range > 0


def _intensity_status(intensity: float) -> str:
    if intensity >= 0.75:
        return 'high'
    if intensity > th.DRIVER_MIN_INTENSITY:
        return 'elevated'
    return 'normal'
