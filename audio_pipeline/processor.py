"""
Per-recording audio processing: VAD -> speech concatenation -> features.

process() returns either a ProcessingResult or an InsufficientSpeech
outcome. Too little speech is an expected user-facing condition ("speak a
bit longer"), so it is returned, not raised. Recordings over the maximum
duration and unusable buffers raise and abort only that recording.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import numpy as np

from audio_pipeline.features import AudioFeatures, FeatureExtractor
from audio_pipeline.vad import (
    SpeechSegment,
    VoiceActivityDetector,
    concatenate_segments,
    total_speech_duration,
)
from exceptions import InvalidAudio, RecordingTooLong
from scoring.quality import VoiceDataQuality, compute_voice_data_quality
from utils.audio_io import PIPELINE_SAMPLE_RATE, calculate_peak, calculate_rms, resample_linear, to_mono

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingMetadata:
    total_duration_sec: float
    speech_duration_sec: float
    processing_time_ms: float
    vad_backend: Optional[str] = None
    sample_rate: int = PIPELINE_SAMPLE_RATE

    def to_dict(self) -> Dict:
        return {
            'total_duration_sec': self.total_duration_sec,
            'speech_duration_sec': self.speech_duration_sec,
            'processing_time_ms': self.processing_time_ms,
            'vad_backend': self.vad_backend,
            'sample_rate': self.sample_rate,
        }


@dataclass(frozen=True)
class ProcessingResult:
    """Features and bookkeeping for one successfully processed recording."""
    features: AudioFeatures
    metadata: ProcessingMetadata
    quality: VoiceDataQuality
    segments: List[SpeechSegment] = field(default_factory=list)
    voiced_frame_count: int = 0


@dataclass(frozen=True)
class InsufficientSpeech:
    """Recording contained too little speech to score."""
    speech_seconds: float
    required_seconds: float
    total_seconds: float
    message: str = "Not enough speech detected. Please speak a bit longer."


class AudioProcessor:
    """
    Orchestrates VAD and feature extraction for a completed recording.

    Usage:
        processor = AudioProcessor(config)
        outcome = processor.process(audio, 48000)
        if isinstance(outcome, InsufficientSpeech):
            ...
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        vad: Optional[VoiceActivityDetector] = None,
        extractor: Optional[FeatureExtractor] = None
    ):
        config = config or {}
        processing_config = config.get('audio', {}).get('processing', {})

        self.min_speech_seconds = processing_config.get('min_speech_seconds', 3.0)
        self.max_duration_sec = processing_config.get('max_duration_sec', 300.0)

        self.vad = vad or VoiceActivityDetector(config)
        self.extractor = extractor or FeatureExtractor(config)

    def process(
        self,
        raw_audio: np.ndarray,
        sample_rate: int
    ) -> Union[ProcessingResult, InsufficientSpeech]:
        """
        Process one recording.

        Args:
            raw_audio: Mono (or (n, channels)) waveform in [-1, 1]
            sample_rate: Sample rate of raw_audio in Hz

        Returns:
            ProcessingResult, or InsufficientSpeech when speech is below
            min_speech_seconds

        Raises:
            InvalidAudio: Empty or non-finite input, or bad sample rate
            RecordingTooLong: Duration above max_duration_sec
        """
        started = time.perf_counter()

        if sample_rate is None or sample_rate <= 0:
            raise InvalidAudio(f"Invalid sample rate: {sample_rate}")

        audio = to_mono(np.asarray(raw_audio, dtype=np.float32))
        if audio.size == 0:
            raise InvalidAudio("Recording is empty")
        if not np.all(np.isfinite(audio)):
            raise InvalidAudio("Recording contains NaN or infinite samples")

        total_duration = len(audio) / sample_rate
        if total_duration > self.max_duration_sec:
            raise RecordingTooLong(total_duration, self.max_duration_sec)

        logger.info(f"Processing {total_duration:.2f}s recording @ {sample_rate}Hz")

        audio_16k = resample_linear(audio, sample_rate, PIPELINE_SAMPLE_RATE)
        segments = self.vad.segment(audio_16k, PIPELINE_SAMPLE_RATE)
        speech_duration = total_speech_duration(segments)

        if speech_duration < self.min_speech_seconds:
            logger.info(
                f"Insufficient speech: {speech_duration:.2f}s "
                f"(need {self.min_speech_seconds:.1f}s)"
            )
            return InsufficientSpeech(
                speech_seconds=speech_duration,
                required_seconds=self.min_speech_seconds,
                total_seconds=total_duration,
            )

        speech_audio = concatenate_segments(audio_16k, PIPELINE_SAMPLE_RATE, segments)
        extraction = self.extractor.extract_detailed(speech_audio, PIPELINE_SAMPLE_RATE, segments)

        quality = compute_voice_data_quality(
            speech_seconds=speech_duration,
            total_seconds=total_duration,
            rms=calculate_rms(speech_audio),
            max_abs=calculate_peak(audio),
            voiced_frame_count=extraction.voiced_frame_count,
        )

        processing_ms = (time.perf_counter() - started) * 1000
        metadata = ProcessingMetadata(
            total_duration_sec=total_duration,
            speech_duration_sec=speech_duration,
            processing_time_ms=processing_ms,
            vad_backend=self.vad.last_backend,
        )

        logger.info(
            f"Processed recording in {processing_ms:.0f}ms: "
            f"{len(segments)} segments, quality={quality.quality:.2f}"
        )
        if quality.reasons:
            logger.info(f"Quality notes: {', '.join(quality.reasons)}")

        return ProcessingResult(
            features=extraction.features,
            metadata=metadata,
            quality=quality,
            segments=segments,
            voiced_frame_count=extraction.voiced_frame_count,
        )
