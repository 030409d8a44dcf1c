"""
Voice Activity Detection (VAD) module.

Engineering decision: Silero VAD as the primary backend, with an energy
based fallback.
- Silero is a small neural VAD loaded through torch.hub (downloaded once)
- Hysteresis (enter at `threshold`, leave at `neg_threshold`) keeps
  segments from flapping at sentence boundaries
- The energy fallback needs only numpy/librosa and works offline; it is
  used when the model cannot be loaded or fails, or when configured with
  `audio.vad.backend: energy`

All timestamps refer to 16kHz audio. Input at another rate is resampled
with linear interpolation first (lossy but deterministic).

Silent input produces zero segments. That is a valid result, not an
error: the processor reports it as insufficient speech.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import librosa
import torch

from exceptions import VadModelUnavailable
from utils.audio_io import PIPELINE_SAMPLE_RATE, resample_linear

logger = logging.getLogger(__name__)

_silero_lock = threading.Lock()
_silero_model = None
_silero_error: Optional[str] = None


@dataclass
class SpeechSegment:
    """
    Represents a detected speech segment.

    Attributes:
        start_time: Segment start in seconds
        end_time: Segment end in seconds
        confidence: VAD confidence score (0-1)
    """
    start_time: float
    end_time: float
    confidence: float

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.end_time - self.start_time


def total_speech_duration(segments: List[SpeechSegment]) -> float:
    """Sum of segment durations in seconds."""
    return float(sum(seg.duration for seg in segments))


def _load_silero_model():
    """
    Load Silero VAD once per process.

    Raises:
        VadModelUnavailable: If the model cannot be loaded. The failure is
            remembered so later recordings go straight to the fallback.
    """
    global _silero_model, _silero_error

    with _silero_lock:
        if _silero_model is not None:
            return _silero_model
        if _silero_error is not None:
            raise VadModelUnavailable(_silero_error)

        try:
            model, utils = torch.hub.load(
                repo_or_dir='snakers4/silero-vad',
                model='silero_vad',
                force_reload=False,
                onnx=False
            )
        except Exception as e:
            _silero_error = f"Silero VAD could not be loaded: {e}"
            raise VadModelUnavailable(_silero_error) from e

        get_speech_timestamps = utils[0]
        _silero_model = (model, get_speech_timestamps)
        logger.info("Silero VAD model loaded")
        return _silero_model


class EnergyVAD:
    """
    RMS energy VAD with adaptive threshold, hysteresis and debounce.

    Enter threshold:
        max(min_rms, min(noise_floor * noise_ratio, peak_rms * peak_ratio))
    where noise_floor is the 10th percentile of frame RMS. Speech ends when
    frame RMS falls below enter * release_ratio. Gaps shorter than
    min_silence_ms are bridged; segments shorter than min_speech_ms are
    dropped.
    """

    def __init__(
        self,
        frame_ms: float = 25.0,
        hop_ms: float = 10.0,
        min_speech_ms: float = 250.0,
        min_silence_ms: float = 200.0,
        min_rms: float = 0.01,
        noise_ratio: float = 3.0,
        peak_ratio: float = 0.5,
        release_ratio: float = 0.7
    ):
        self.frame_ms = frame_ms
        self.hop_ms = hop_ms
        self.min_speech_ms = min_speech_ms
        self.min_silence_ms = min_silence_ms
        self.min_rms = min_rms
        self.noise_ratio = noise_ratio
        self.peak_ratio = peak_ratio
        self.release_ratio = release_ratio

    def thresholds(self, energy: np.ndarray) -> Tuple[float, float]:
        """Return (enter, release) thresholds for a frame-energy track."""
        if len(energy) == 0:
            return self.min_rms, self.min_rms * self.release_ratio
        noise_floor = float(np.percentile(energy, 10))
        peak = float(np.max(energy))
        enter = max(self.min_rms, min(noise_floor * self.noise_ratio, peak * self.peak_ratio))
        return enter, enter * self.release_ratio

    def iter_segments(self, audio_data: np.ndarray, sample_rate: int) -> Iterator[SpeechSegment]:
        frame_length = int(sample_rate * self.frame_ms / 1000)
        hop_length = int(sample_rate * self.hop_ms / 1000)
        duration = len(audio_data) / sample_rate

        if len(audio_data) < frame_length:
            return

        frames = librosa.util.frame(
            np.ascontiguousarray(audio_data, dtype=np.float32),
            frame_length=frame_length,
            hop_length=hop_length
        )
        energy = np.sqrt(np.mean(frames.astype(np.float64) ** 2, axis=0))
        enter, release = self.thresholds(energy)

        logger.debug(f"Energy VAD thresholds: enter={enter:.4f}, release={release:.4f}")

        def frame_span(first: int, last: int) -> Tuple[float, float]:
            start = first * hop_length / sample_rate
            end = min((last * hop_length + frame_length) / sample_rate, duration)
            return start, end

        pending: Optional[List] = None   # [start, end, frames_above, frames_total]
        in_speech = False
        first_frame = 0

        def close(last_frame: int):
            nonlocal pending
            start, end = frame_span(first_frame, last_frame)
            seg_energy = energy[first_frame:last_frame + 1]
            above = int(np.sum(seg_energy > enter))
            if pending is not None and (start - pending[1]) * 1000 < self.min_silence_ms:
                pending[1] = end
                pending[2] += above
                pending[3] += len(seg_energy)
                return None
            finished = pending
            pending = [start, end, above, len(seg_energy)]
            return finished

        for i, value in enumerate(energy):
            if not in_speech and value > enter:
                in_speech = True
                first_frame = i
            elif in_speech and value < release:
                in_speech = False
                finished = close(i - 1)
                segment = self._emit(finished)
                if segment is not None:
                    yield segment

        if in_speech:
            finished = close(len(energy) - 1)
            segment = self._emit(finished)
            if segment is not None:
                yield segment

        segment = self._emit(pending)
        if segment is not None:
            yield segment

    def _emit(self, candidate: Optional[List]) -> Optional[SpeechSegment]:
        if candidate is None:
            return None
        start, end, above, total = candidate
        if (end - start) * 1000 < self.min_speech_ms:
            return None
        confidence = above / total if total else 0.0
        return SpeechSegment(start_time=start, end_time=end, confidence=float(confidence))


class VoiceActivityDetector:
    """
    Speech segmentation with Silero VAD and energy fallback.

    Usage:
        vad = VoiceActivityDetector(config)
        for segment in vad.iter_segments(audio, 44100):
            ...
    """

    def __init__(self, config: Optional[Dict] = None):
        vad_config = (config or {}).get('audio', {}).get('vad', {})

        self.backend = vad_config.get('backend', 'silero')
        self.threshold = vad_config.get('threshold', 0.5)
        self.neg_threshold = vad_config.get('neg_threshold', 0.35)
        self.min_speech_ms = vad_config.get('min_speech_ms', 250)
        self.min_silence_ms = vad_config.get('min_silence_ms', 200)
        self.speech_pad_ms = vad_config.get('speech_pad_ms', 30)

        energy_config = vad_config.get('energy', {})
        self.energy_vad = EnergyVAD(
            frame_ms=energy_config.get('frame_ms', 25.0),
            hop_ms=energy_config.get('hop_ms', 10.0),
            min_speech_ms=self.min_speech_ms,
            min_silence_ms=self.min_silence_ms,
            min_rms=energy_config.get('min_rms', 0.01),
            noise_ratio=energy_config.get('noise_ratio', 3.0),
            peak_ratio=energy_config.get('peak_ratio', 0.5),
            release_ratio=energy_config.get('release_ratio', 0.7)
        )

        # Backend that produced the most recent segmentation
        self.last_backend: Optional[str] = None

        if self.backend not in ('silero', 'energy'):
            raise ValueError(f"Unknown VAD backend: {self.backend}")

        logger.info(f"VAD initialized (backend={self.backend}, threshold={self.threshold})")

    def iter_segments(self, audio_data: np.ndarray, sample_rate: int) -> Iterator[SpeechSegment]:
        """
        Lazily yield speech segments.

        Args:
            audio_data: Mono waveform at any sample rate
            sample_rate: Sample rate of audio_data in Hz

        Yields:
            SpeechSegment with times relative to the start of audio_data
        """
        audio_16k = resample_linear(audio_data, sample_rate, PIPELINE_SAMPLE_RATE)

        if self.backend == 'silero':
            try:
                timestamps = self._silero_timestamps(audio_16k)
            except VadModelUnavailable as e:
                logger.warning(f"{e}. Falling back to energy-based VAD")
            else:
                self.last_backend = 'silero'
                for ts in timestamps:
                    yield SpeechSegment(
                        start_time=ts['start'] / PIPELINE_SAMPLE_RATE,
                        end_time=ts['end'] / PIPELINE_SAMPLE_RATE,
                        confidence=1.0  # Silero doesn't return per-segment confidence
                    )
                return

        self.last_backend = 'energy'
        yield from self.energy_vad.iter_segments(audio_16k, PIPELINE_SAMPLE_RATE)

    def segment(self, audio_data: np.ndarray, sample_rate: int) -> List[SpeechSegment]:
        """Eager version of iter_segments with a summary log line."""
        segments = list(self.iter_segments(audio_data, sample_rate))

        duration = len(audio_data) / sample_rate if sample_rate else 0.0
        speech = total_speech_duration(segments)
        share = speech / duration * 100 if duration > 0 else 0.0
        logger.info(
            f"Detected {len(segments)} speech segments "
            f"({speech:.2f}s total, {share:.1f}% of audio, backend={self.last_backend})"
        )
        return segments

    def _silero_timestamps(self, audio_16k: np.ndarray) -> List[Dict[str, int]]:
        model, get_speech_timestamps = _load_silero_model()

        try:
            with _silero_lock:
                return get_speech_timestamps(
                    torch.from_numpy(np.ascontiguousarray(audio_16k)).float(),
                    model,
                    threshold=self.threshold,
                    neg_threshold=self.neg_threshold,
                    sampling_rate=PIPELINE_SAMPLE_RATE,
                    min_speech_duration_ms=self.min_speech_ms,
                    min_silence_duration_ms=self.min_silence_ms,
                    speech_pad_ms=self.speech_pad_ms
                )
        except (RuntimeError, ValueError, TypeError) as e:
            raise VadModelUnavailable(f"Silero VAD inference failed: {e}") from e


def concatenate_segments(
    audio_data: np.ndarray,
    sample_rate: int,
    segments: List[SpeechSegment]
) -> np.ndarray:
    """Concatenate the samples covered by segments (speech-only audio)."""
    if not segments:
        return np.zeros(0, dtype=np.float32)
    pieces = []
    for seg in segments:
        start = max(0, int(round(seg.start_time * sample_rate)))
        end = min(len(audio_data), int(round(seg.end_time * sample_rate)))
        if end > start:
            pieces.append(audio_data[start:end])
    if not pieces:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(pieces).astype(np.float32)
