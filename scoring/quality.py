"""Recording quality heuristics feeding biomarker confidence."""

import math
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class VoiceDataQuality:
    """
    How much trust a recording deserves.

    Attributes:
        speech_seconds: Detected speech (clamped into [0, total_seconds])
        total_seconds: Recording duration
        speech_ratio: speech_seconds / total_seconds (0 for empty input)
        quality: Overall quality (0-1)
        reasons: Human-readable penalties that were applied
    """
    speech_seconds: float
    total_seconds: float
    speech_ratio: float
    quality: float
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict:
        return {
            'speech_seconds': self.speech_seconds,
            'total_seconds': self.total_seconds,
            'speech_ratio': self.speech_ratio,
            'quality': self.quality,
            'reasons': list(self.reasons),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'VoiceDataQuality':
        return cls(
            speech_seconds=float(data['speech_seconds']),
            total_seconds=float(data['total_seconds']),
            speech_ratio=float(data['speech_ratio']),
            quality=float(data['quality']),
            reasons=tuple(data.get('reasons', ())),
        )


NO_QUALITY_FALLBACK = 0.5
NO_QUALITY_REASON = "No recording quality metadata"


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def compute_voice_data_quality(
    speech_seconds: float,
    total_seconds: float,
    rms: Optional[float] = None,
    max_abs: Optional[float] = None,
    voiced_frame_count: Optional[int] = None
) -> VoiceDataQuality:
    """
    Score recording quality from speech amount and signal level.

    quality = 0.75 * (1 - exp(-speech/4)) + 0.25 * clamp((ratio - 0.2) / 0.6)
    then multiplied by a penalty for each problem found.
    """
    total = max(0.0, float(total_seconds))
    speech = min(max(0.0, float(speech_seconds)), total)
    ratio = speech / total if total > 0 else 0.0

    speech_amount = 1.0 - math.exp(-speech / 4.0)
    ratio_score = _clamp01((ratio - 0.2) / 0.6)
    quality = 0.75 * speech_amount + 0.25 * ratio_score

    reasons = []
    if speech < 2.0:
        quality *= 0.55
        reasons.append("Very little speech")
    elif speech < 5.0:
        quality *= 0.8
        reasons.append("Short speech sample")

    if total > 0 and ratio < 0.25:
        quality *= 0.8
        reasons.append("Mostly silence")

    if rms is not None and rms < 0.05:
        quality *= 0.85
        reasons.append("Very quiet audio")

    if max_abs is not None and max_abs > 0.98:
        quality *= 0.9
        reasons.append("Audio near clipping")

    if voiced_frame_count is not None and voiced_frame_count == 0:
        quality *= 0.7
        reasons.append("No voiced frames detected")

    return VoiceDataQuality(
        speech_seconds=speech,
        total_seconds=total,
        speech_ratio=ratio,
        quality=_clamp01(quality),
        reasons=tuple(reasons),
    )


def fallback_quality() -> VoiceDataQuality:
    """Neutral record used when a caller supplies no quality data."""
    return VoiceDataQuality(
        speech_seconds=0.0,
        total_seconds=0.0,
        speech_ratio=0.0,
        quality=NO_QUALITY_FALLBACK,
        reasons=(NO_QUALITY_REASON,),
    )
