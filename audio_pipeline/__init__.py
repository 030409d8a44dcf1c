"""
Audio side of the voice biomarker pipeline.

Stages:
1. Microphone capture (sounddevice)
2. Voice Activity Detection (Silero VAD, energy fallback)
3. Acoustic feature extraction (librosa)
4. Per-recording processing and validation
5. Session-level feature aggregation
"""

from .vad import VoiceActivityDetector, EnergyVAD, SpeechSegment
from .features import AudioFeatures, FeatureExtractor
from .processor import AudioProcessor, ProcessingResult, InsufficientSpeech
from .capture import AudioCapture
from .aggregation import FeatureAccumulator

__all__ = [
    'VoiceActivityDetector',
    'EnergyVAD',
    'SpeechSegment',
    'AudioFeatures',
    'FeatureExtractor',
    'AudioProcessor',
    'ProcessingResult',
    'InsufficientSpeech',
    'AudioCapture',
    'FeatureAccumulator',
]
