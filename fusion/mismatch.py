"""
Say/sound mismatch detection.

Compares what the user said (transcript sentiment) with how they sounded
(acoustic bands). Opposed pairs:

    positive text            x stressed / fatigued voice
    negative text            x energetic / normal voice
    dismissive neutral text  x stressed / fatigued voice

A mismatch is reported only when both sides clear min_confidence. The
suggestion is a plain string meant for the conversational assistant's
context; nothing else crosses that boundary.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from audio_pipeline.features import AudioFeatures
from fusion.semantic import SentimentResult, classify_sentiment
from scoring.biomarkers import VoiceMetrics

logger = logging.getLogger(__name__)

SUGGESTION_FATIGUED = (
    "User said they're doing okay but their voice shows signs of fatigue "
    "(low energy, slower speech, flatter tone). Consider gently asking about "
    "their sleep or energy levels."
)
SUGGESTION_STRESSED = (
    "User said things are fine but their voice shows stress patterns "
    "(faster speech, tension). Consider gently asking what's on their mind "
    "or if anything feels overwhelming."
)
SUGGESTION_ENERGETIC = (
    "User expressed concerns but their voice sounds energetic. They might be "
    "venting productively or processing something. Keep listening supportively."
)
SUGGESTION_CALM = (
    "User expressed concerns but their voice sounds calm and steady. Consider "
    "asking how long they've felt this way and what has helped."
)


@dataclass(frozen=True)
class MismatchResult:
    detected: bool
    semantic_signal: str
    acoustic_signal: str
    confidence: float
    suggestion_for_gemini: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'detected': self.detected,
            'semantic_signal': self.semantic_signal,
            'acoustic_signal': self.acoustic_signal,
            'confidence': self.confidence,
            'suggestion_for_gemini': self.suggestion_for_gemini,
        }


@dataclass(frozen=True)
class VoicePatterns:
    """Qualitative voice description for assistant context."""
    speech_rate: str      # slow / normal / fast
    energy_level: str     # low / moderate / high
    pause_frequency: str  # rare / normal / frequent
    voice_tone: str       # dull / neutral / bright

    def to_dict(self) -> Dict:
        return {
            'speech_rate': self.speech_rate,
            'energy_level': self.energy_level,
            'pause_frequency': self.pause_frequency,
            'voice_tone': self.voice_tone,
        }


def features_to_patterns(features: AudioFeatures) -> VoicePatterns:
    speech_rate = 'normal'
    if features.speech_rate > 5:
        speech_rate = 'fast'
    elif features.speech_rate < 3:
        speech_rate = 'slow'

    energy_level = 'moderate'
    if features.rms > 0.2:
        energy_level = 'high'
    elif features.rms < 0.08:
        energy_level = 'low'

    pause_frequency = 'normal'
    if features.pause_ratio > 0.4 or features.pause_count > 10:
        pause_frequency = 'frequent'
    elif features.pause_ratio < 0.15 and features.pause_count < 3:
        pause_frequency = 'rare'

    voice_tone = 'neutral'
    if features.spectral_centroid > 2500:
        voice_tone = 'bright'
    elif features.spectral_centroid < 1500:
        voice_tone = 'dull'

    return VoicePatterns(speech_rate, energy_level, pause_frequency, voice_tone)


def should_run_mismatch_detection(transcript: str, features: Optional[AudioFeatures]) -> bool:
    """Need at least three words and a non-empty feature record."""
    if not transcript or features is None:
        return False
    if len(transcript.split()) < 3:
        return False
    return features.rms > 0 or features.speech_rate > 0 or features.spectral_centroid > 0


class MismatchDetector:
    """
    Per-utterance say/sound comparison.

    Usage:
        detector = MismatchDetector(config)
        result = detector.detect(transcript, features, metrics)
    """

    def __init__(self, config: Optional[Dict] = None):
        mismatch_config = (config or {}).get('mismatch', {})

        self.min_confidence = mismatch_config.get('min_confidence', 0.4)
        self.energetic_rms = mismatch_config.get('energetic_rms', 0.15)
        self.energetic_speech_rate = mismatch_config.get('energetic_speech_rate', 4.5)
        self.energetic_centroid = mismatch_config.get('energetic_centroid', 2000.0)

    def acoustic_signal(self, features: AudioFeatures, metrics: VoiceMetrics) -> str:
        if metrics.stress_level in ('elevated', 'high'):
            return 'stressed'
        if metrics.fatigue_level in ('tired', 'exhausted'):
            return 'fatigued'
        if (features.rms > self.energetic_rms
                and features.speech_rate > self.energetic_speech_rate
                and features.spectral_centroid > self.energetic_centroid):
            return 'energetic'
        return 'normal'

    def acoustic_confidence(self, features: AudioFeatures, metrics: VoiceMetrics) -> float:
        confidence = metrics.confidence

        if not (features.speech_rate > 0 and features.pause_ratio < 0.8):
            confidence *= 0.6

        # Scores far from the middle are clearer signals
        stress_extremity = abs(metrics.stress_score - 50) / 50
        fatigue_extremity = abs(metrics.fatigue_score - 50) / 50
        confidence += (stress_extremity + fatigue_extremity) / 2 * 0.2

        return min(1.0, max(0.0, confidence))

    def detect(self, transcript: str, features: AudioFeatures, metrics: VoiceMetrics) -> MismatchResult:
        sentiment = classify_sentiment(transcript)
        acoustic = self.acoustic_signal(features, metrics)
        acoustic_conf = self.acoustic_confidence(features, metrics)

        opposed = _is_opposed(sentiment, acoustic)
        detected = (
            opposed
            and sentiment.confidence >= self.min_confidence
            and acoustic_conf >= self.min_confidence
        )

        result = MismatchResult(
            detected=detected,
            semantic_signal=sentiment.signal,
            acoustic_signal=acoustic,
            confidence=round(min(sentiment.confidence, acoustic_conf), 3),
            suggestion_for_gemini=_suggestion(sentiment, acoustic) if detected else None,
        )

        if detected:
            logger.info(
                f"Mismatch detected: text={sentiment.signal}, voice={acoustic}, "
                f"confidence={result.confidence:.2f}"
            )
        return result


def _is_opposed(sentiment: SentimentResult, acoustic: str) -> bool:
    if sentiment.signal == 'positive':
        return acoustic in ('stressed', 'fatigued')
    if sentiment.signal == 'negative':
        return acoustic in ('energetic', 'normal')
    return sentiment.dismissive and acoustic in ('stressed', 'fatigued')


def _suggestion(sentiment: SentimentResult, acoustic: str) -> Optional[str]:
    if acoustic == 'fatigued':
        return SUGGESTION_FATIGUED
    if acoustic == 'stressed':
        return SUGGESTION_STRESSED
    if acoustic == 'energetic':
        return SUGGESTION_ENERGETIC
    if acoustic == 'normal' and sentiment.signal == 'negative':
        return SUGGESTION_CALM
    return None
