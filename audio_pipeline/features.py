"""
Acoustic feature extraction for voice biomarkers.

Feature groups:
- Spectral: 13 MFCCs (per-coefficient mean), centroid, rolloff, flux
- Energy: RMS, zero-crossing rate
- Temporal: speech rate, pause ratio/count/duration (from VAD segments)
- Pitch: mean, standard deviation and range of f0 over voiced frames

Engineering approach:
- librosa for framing and spectral features (1024-sample window, 50% overlap)
- Spectral flux is the total-variation distance between consecutive
  L1-normalized magnitude spectra, so it always lies in [0, 1]
- Speech rate counts peaks of a smoothed energy envelope with
  scipy.signal.find_peaks. This is a syllable-nucleus proxy, not phonetic
  ground truth; compare it across recordings, not against transcripts.
- Pitch uses librosa.pyin; unvoiced frames are excluded. With no voiced
  frames every pitch field is 0.0 and voiced_frame_count is 0.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import librosa
from scipy.signal import find_peaks

from audio_pipeline.vad import SpeechSegment

logger = logging.getLogger(__name__)

N_MFCC = 13


@dataclass(frozen=True)
class AudioFeatures:
    """
    Fixed-shape acoustic feature record for one recording.

    Attributes:
        mfcc: 13 mean MFCC coefficients
        spectral_centroid: Mean spectral centroid (Hz)
        spectral_flux: Mean normalized spectral change (0-1)
        spectral_rolloff: Mean 85% rolloff frequency (Hz)
        rms: Mean frame RMS amplitude
        zcr: Mean zero-crossing rate (crossings per sample)
        speech_rate: Estimated syllable nuclei per second
        pause_ratio: Silence / analyzed span (0-1)
        pause_count: Number of pauses >= 200ms
        avg_pause_duration_ms: Mean duration of counted pauses
        pitch_mean: Mean f0 over voiced frames (Hz)
        pitch_std_dev: f0 standard deviation (Hz)
        pitch_range: f0 max - min (Hz)
    """
    mfcc: Tuple[float, ...]
    spectral_centroid: float
    spectral_flux: float
    spectral_rolloff: float
    rms: float
    zcr: float
    speech_rate: float
    pause_ratio: float
    pause_count: int
    avg_pause_duration_ms: float
    pitch_mean: float
    pitch_std_dev: float
    pitch_range: float

    def __post_init__(self):
        if len(self.mfcc) != N_MFCC:
            raise ValueError(f"Expected {N_MFCC} MFCC coefficients, got {len(self.mfcc)}")
        object.__setattr__(self, 'mfcc', tuple(float(c) for c in self.mfcc))

    @classmethod
    def empty(cls) -> 'AudioFeatures':
        """All-zero feature vector."""
        return cls(
            mfcc=(0.0,) * N_MFCC,
            spectral_centroid=0.0,
            spectral_flux=0.0,
            spectral_rolloff=0.0,
            rms=0.0,
            zcr=0.0,
            speech_rate=0.0,
            pause_ratio=0.0,
            pause_count=0,
            avg_pause_duration_ms=0.0,
            pitch_mean=0.0,
            pitch_std_dev=0.0,
            pitch_range=0.0
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['mfcc'] = list(self.mfcc)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'AudioFeatures':
        return cls(
            mfcc=tuple(data['mfcc']),
            spectral_centroid=float(data['spectral_centroid']),
            spectral_flux=float(data['spectral_flux']),
            spectral_rolloff=float(data['spectral_rolloff']),
            rms=float(data['rms']),
            zcr=float(data['zcr']),
            speech_rate=float(data['speech_rate']),
            pause_ratio=float(data['pause_ratio']),
            pause_count=int(data['pause_count']),
            avg_pause_duration_ms=float(data['avg_pause_duration_ms']),
            pitch_mean=float(data['pitch_mean']),
            pitch_std_dev=float(data['pitch_std_dev']),
            pitch_range=float(data['pitch_range'])
        )


@dataclass(frozen=True)
class FeatureExtraction:
    """AudioFeatures plus the frame statistics the quality check needs."""
    features: AudioFeatures
    voiced_frame_count: int
    frame_count: int


@dataclass(frozen=True)
class TemporalFeatures:
    pause_ratio: float
    pause_count: int
    avg_pause_duration_ms: float
    span_sec: float


def compute_temporal_features(
    segments: Sequence[SpeechSegment],
    min_pause_sec: float = 0.2
) -> TemporalFeatures:
    """
    Pause statistics from VAD segment boundaries.

    The analyzed span runs from the first speech start to the last speech
    end, so leading and trailing silence never count as pauses.
    """
    if not segments:
        return TemporalFeatures(0.0, 0, 0.0, 0.0)

    ordered = sorted(segments, key=lambda s: s.start_time)
    span = ordered[-1].end_time - ordered[0].start_time
    if span <= 0:
        return TemporalFeatures(0.0, 0, 0.0, 0.0)

    gaps = []
    for prev, nxt in zip(ordered[:-1], ordered[1:]):
        gaps.append(max(0.0, nxt.start_time - prev.end_time))

    silence = float(sum(gaps))
    pauses = [g for g in gaps if g >= min_pause_sec]
    avg_pause_ms = float(np.mean(pauses) * 1000) if pauses else 0.0

    return TemporalFeatures(
        pause_ratio=float(np.clip(silence / span, 0.0, 1.0)),
        pause_count=len(pauses),
        avg_pause_duration_ms=avg_pause_ms,
        span_sec=float(span)
    )


class FeatureExtractor:
    """
    Compute one AudioFeatures record from speech-only audio.

    Usage:
        extractor = FeatureExtractor(config)
        features = extractor.extract(speech_audio, 16000, segments)
    """

    def __init__(self, config: Optional[Dict] = None):
        feature_config = (config or {}).get('audio', {}).get('features', {})

        self.frame_length = feature_config.get('frame_length', 1024)
        self.hop_length = feature_config.get('hop_length', 512)
        self.rolloff_percent = feature_config.get('rolloff_percent', 0.85)
        self.min_pause_sec = feature_config.get('min_pause_sec', 0.2)
        self.pitch_method = feature_config.get('pitch_method', 'pyin')
        self.f0_min = feature_config.get('f0_min', 50.0)
        self.f0_max = feature_config.get('f0_max', 500.0)
        self.envelope_ms = feature_config.get('envelope_ms', 10.0)
        self.min_syllable_gap_ms = feature_config.get('min_syllable_gap_ms', 100.0)
        self.peak_prominence = feature_config.get('peak_prominence', 0.1)

        if self.pitch_method not in ('pyin', 'yin'):
            raise ValueError(f"Unknown pitch method: {self.pitch_method}")

    def extract(
        self,
        speech_audio: np.ndarray,
        sample_rate: int,
        segments: Optional[Sequence[SpeechSegment]] = None
    ) -> AudioFeatures:
        return self.extract_detailed(speech_audio, sample_rate, segments).features

    def extract_detailed(
        self,
        speech_audio: np.ndarray,
        sample_rate: int,
        segments: Optional[Sequence[SpeechSegment]] = None
    ) -> FeatureExtraction:
        """
        Extract features and frame statistics.

        Args:
            speech_audio: Concatenated speech-only waveform (mono)
            sample_rate: Sample rate in Hz
            segments: VAD segments on the original timeline, used for the
                pause features (pause fields are 0 when omitted)

        Returns:
            FeatureExtraction with the feature record and voiced frame count
        """
        y = np.asarray(speech_audio, dtype=np.float32)
        temporal = compute_temporal_features(segments or [], self.min_pause_sec)

        if len(y) < self.frame_length:
            logger.warning(
                f"Speech audio too short for analysis ({len(y)} samples), "
                f"returning zero features"
            )
            return FeatureExtraction(features=AudioFeatures.empty(), voiced_frame_count=0, frame_count=0)

        spectral = self._spectral_features(y, sample_rate)
        speech_rate = self._estimate_speech_rate(y, sample_rate)
        pitch_mean, pitch_std, pitch_range, voiced, frames = self._pitch_features(y, sample_rate)

        features = AudioFeatures(
            mfcc=spectral['mfcc'],
            spectral_centroid=spectral['centroid'],
            spectral_flux=spectral['flux'],
            spectral_rolloff=spectral['rolloff'],
            rms=spectral['rms'],
            zcr=spectral['zcr'],
            speech_rate=speech_rate,
            pause_ratio=temporal.pause_ratio,
            pause_count=temporal.pause_count,
            avg_pause_duration_ms=temporal.avg_pause_duration_ms,
            pitch_mean=pitch_mean,
            pitch_std_dev=pitch_std,
            pitch_range=pitch_range
        )

        logger.info(
            f"Extracted features: rate={speech_rate:.2f}/s, rms={features.rms:.3f}, "
            f"pause_ratio={features.pause_ratio:.2f}, pitch={pitch_mean:.1f}Hz "
            f"({voiced}/{frames} voiced frames)"
        )

        return FeatureExtraction(features=features, voiced_frame_count=voiced, frame_count=frames)

    def _spectral_features(self, y: np.ndarray, sample_rate: int) -> Dict:
        S = np.abs(librosa.stft(y, n_fft=self.frame_length, hop_length=self.hop_length))

        mfcc = librosa.feature.mfcc(
            y=y,
            sr=sample_rate,
            n_mfcc=N_MFCC,
            n_fft=self.frame_length,
            hop_length=self.hop_length
        )
        centroid = librosa.feature.spectral_centroid(S=S, sr=sample_rate)[0]
        rolloff = librosa.feature.spectral_rolloff(S=S, sr=sample_rate, roll_percent=self.rolloff_percent)[0]
        rms = librosa.feature.rms(y=y, frame_length=self.frame_length, hop_length=self.hop_length)[0]
        zcr = librosa.feature.zero_crossing_rate(y, frame_length=self.frame_length, hop_length=self.hop_length)[0]

        return {
            'mfcc': tuple(float(v) for v in np.mean(mfcc, axis=1)),
            'centroid': float(np.mean(centroid)),
            'rolloff': float(np.mean(rolloff)),
            'flux': compute_spectral_flux(S),
            'rms': float(np.mean(rms)),
            'zcr': float(np.mean(zcr))
        }

    def _estimate_speech_rate(self, y: np.ndarray, sample_rate: int) -> float:
        """
        Syllable-nucleus proxy: peaks of a smoothed energy envelope per second.

        Returns:
            Estimated rate clipped to [0, 10]
        """
        hop = max(1, int(sample_rate * self.envelope_ms / 1000))
        envelope = librosa.feature.rms(y=y, frame_length=2 * hop, hop_length=hop)[0]
        if len(envelope) < 3 or np.max(envelope) <= 0:
            return 0.0

        # 50ms moving average removes pitch-period ripple
        kernel = np.ones(5) / 5
        envelope = np.convolve(envelope, kernel, mode='same')

        distance = max(1, int(self.min_syllable_gap_ms / self.envelope_ms))
        peaks, _ = find_peaks(
            envelope,
            distance=distance,
            prominence=float(np.max(envelope)) * self.peak_prominence
        )

        duration = len(y) / sample_rate
        rate = len(peaks) / duration if duration > 0 else 0.0
        return float(np.clip(rate, 0.0, 10.0))

    def _pitch_features(self, y: np.ndarray, sample_rate: int) -> Tuple[float, float, float, int, int]:
        """Return (mean, std, range, voiced_frames, total_frames) over voiced frames."""
        frame_length = 2048

        if self.pitch_method == 'pyin':
            f0, voiced_flag, _ = librosa.pyin(
                y,
                fmin=self.f0_min,
                fmax=self.f0_max,
                sr=sample_rate,
                frame_length=frame_length,
                hop_length=self.hop_length
            )
            voiced = f0[voiced_flag & ~np.isnan(f0)]
        else:
            f0 = librosa.yin(
                y,
                fmin=self.f0_min,
                fmax=self.f0_max,
                sr=sample_rate,
                frame_length=frame_length,
                hop_length=self.hop_length
            )
            # yin has no voicing decision; gate on frame energy
            energy = librosa.feature.rms(y=y, frame_length=frame_length, hop_length=self.hop_length)[0]
            n = min(len(f0), len(energy))
            f0, energy = f0[:n], energy[:n]
            gate = max(0.01, 0.2 * float(np.max(energy))) if n else 0.01
            voiced = f0[(energy > gate) & (f0 > self.f0_min) & (f0 < self.f0_max)]

        total = len(f0)
        if len(voiced) == 0:
            logger.warning("No voiced frames detected, pitch features set to 0")
            return 0.0, 0.0, 0.0, 0, total

        return (
            float(np.mean(voiced)),
            float(np.std(voiced)),
            float(np.max(voiced) - np.min(voiced)),
            int(len(voiced)),
            total
        )


def compute_spectral_flux(S: np.ndarray, eps: float = 1e-10) -> float:
    """
    Mean total-variation distance between consecutive normalized spectra.

    Args:
        S: Magnitude spectrogram (n_bins, n_frames)

    Returns:
        Flux in [0, 1]; 0.0 when fewer than two non-silent frames exist
    """
    if S.ndim != 2 or S.shape[1] < 2:
        return 0.0

    totals = S.sum(axis=0)
    active = totals > eps
    P = np.where(active, S / np.maximum(totals, eps), 0.0)

    # Only pairs where both frames carry energy
    pair_mask = active[1:] & active[:-1]
    if not np.any(pair_mask):
        return 0.0

    distances = 0.5 * np.abs(P[:, 1:] - P[:, :-1]).sum(axis=0)
    return float(np.clip(np.mean(distances[pair_mask]), 0.0, 1.0))


def features_from_values(values: Dict) -> AudioFeatures:
    """Build AudioFeatures from a partial dict, filling missing fields with 0."""
    base = AudioFeatures.empty().to_dict()
    base.update(values)
    return AudioFeatures.from_dict(base)
