"""Session-level averaging of per-utterance features."""

import logging
import math
from typing import Dict, Optional

from audio_pipeline.features import AudioFeatures, N_MFCC

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = (
    'spectral_centroid', 'spectral_flux', 'spectral_rolloff', 'rms', 'zcr',
    'speech_rate', 'pause_ratio', 'avg_pause_duration_ms',
    'pitch_mean', 'pitch_std_dev', 'pitch_range',
)


class FeatureAccumulator:
    """
    Weighted running average of AudioFeatures across a session.

    Weights are normally speech seconds per utterance; non-positive or
    non-finite weights count as 1. Pause counts are summed, everything
    else is averaged.
    """

    def __init__(self):
        self.total_weight = 0.0
        self.count = 0
        self._mfcc_sums = [0.0] * N_MFCC
        self._sums: Dict[str, float] = {name: 0.0 for name in _SCALAR_FIELDS}
        self._pause_count = 0
        # Pitch is averaged only over utterances that had voiced frames
        self._pitch_weight = 0.0

    def add(self, features: AudioFeatures, weight: float = 1.0) -> None:
        if not math.isfinite(weight) or weight <= 0:
            weight = 1.0

        has_pitch = features.pitch_mean > 0
        for name in _SCALAR_FIELDS:
            if name.startswith('pitch_') and not has_pitch:
                continue
            self._sums[name] += getattr(features, name) * weight
        for i, value in enumerate(features.mfcc):
            self._mfcc_sums[i] += value * weight

        if has_pitch:
            self._pitch_weight += weight
        self._pause_count += features.pause_count
        self.total_weight += weight
        self.count += 1

    def average(self) -> Optional[AudioFeatures]:
        """Weighted mean, or None when nothing was added."""
        if self.count == 0:
            return None

        values = {}
        for name in _SCALAR_FIELDS:
            divisor = self._pitch_weight if name.startswith('pitch_') else self.total_weight
            values[name] = self._sums[name] / divisor if divisor > 0 else 0.0

        logger.debug(f"Averaged {self.count} utterances (weight {self.total_weight:.2f})")
        return AudioFeatures(
            mfcc=tuple(s / self.total_weight for s in self._mfcc_sums),
            pause_count=self._pause_count,
            **values
        )
