"""
Audio I/O and PCM helpers.

Engineering decisions:
- Pipeline rate is 16kHz mono float32 in [-1, 1]
- Files are decoded with librosa (any format soundfile/audioread can read)
- Recordings are written as 16-bit PCM WAV with soundfile
- Stream-rate conversion uses linear interpolation: lossy, but
  deterministic and cheap enough to run per recording
"""

import logging
from pathlib import Path
from typing import Tuple

import numpy as np
import librosa
import soundfile as sf

logger = logging.getLogger(__name__)

PIPELINE_SAMPLE_RATE = 16000


def load_audio(
    audio_path: Path,
    sample_rate: int = PIPELINE_SAMPLE_RATE,
    mono: bool = True
) -> Tuple[np.ndarray, int]:
    """
    Load audio file from disk.

    Args:
        audio_path: Path to audio file (str or Path)
        sample_rate: Target sample rate (resamples if different)
        mono: Convert to mono if True

    Returns:
        Tuple of (audio_data as float32, sample_rate)
    """
    audio_path = Path(audio_path)
    if not audio_path.exists():
        raise FileNotFoundError(f"Audio file not found: {audio_path}")

    logger.info(f"Loading audio from {audio_path}")

    audio_data, sr = librosa.load(str(audio_path), sr=sample_rate, mono=mono)

    logger.info(f"Loaded audio: {len(audio_data)/sr:.2f}s @ {sr}Hz")

    return audio_data.astype(np.float32), sr


def save_audio(audio_path: Path, audio_data: np.ndarray, sample_rate: int) -> Path:
    """Write a mono recording as 16-bit PCM WAV."""
    audio_path = Path(audio_path)
    audio_path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(audio_path), audio_data, sample_rate, subtype='PCM_16')
    logger.info(f"Saved {len(audio_data)/sample_rate:.2f}s recording to {audio_path}")
    return audio_path


def resample_linear(audio_data: np.ndarray, from_rate: int, to_rate: int) -> np.ndarray:
    """
    Resample by linear interpolation.

    Output length is round(len * to_rate / from_rate). Same-rate input is
    returned unchanged (as float32).
    """
    audio_data = np.asarray(audio_data, dtype=np.float32)
    if from_rate == to_rate or len(audio_data) == 0:
        return audio_data
    if from_rate <= 0 or to_rate <= 0:
        raise ValueError(f"Sample rates must be positive ({from_rate} -> {to_rate})")

    out_length = int(round(len(audio_data) * to_rate / from_rate))
    if out_length <= 0:
        return np.zeros(0, dtype=np.float32)

    positions = np.arange(out_length, dtype=np.float64) * (from_rate / to_rate)
    source_index = np.arange(len(audio_data), dtype=np.float64)
    resampled = np.interp(positions, source_index, audio_data)

    return resampled.astype(np.float32)


def float32_to_int16(audio_data: np.ndarray) -> np.ndarray:
    """Convert [-1, 1] float samples to int16 PCM (clipping out-of-range values)."""
    clipped = np.clip(np.asarray(audio_data, dtype=np.float32), -1.0, 1.0)
    # Asymmetric scale keeps -1.0 -> -32768 and 1.0 -> 32767
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.round(scaled).astype(np.int16)


def int16_to_float32(pcm: np.ndarray) -> np.ndarray:
    """Convert int16 PCM to [-1, 1] float32 samples."""
    pcm = np.asarray(pcm, dtype=np.int16).astype(np.float32)
    return np.where(pcm < 0, pcm / 32768.0, pcm / 32767.0).astype(np.float32)


def calculate_rms(audio_data: np.ndarray) -> float:
    """Root-mean-square level of a buffer (0.0 for empty input)."""
    if len(audio_data) == 0:
        return 0.0
    audio_data = np.asarray(audio_data, dtype=np.float64)
    return float(np.sqrt(np.mean(audio_data ** 2)))


def calculate_peak(audio_data: np.ndarray) -> float:
    """Maximum absolute sample value (0.0 for empty input)."""
    if len(audio_data) == 0:
        return 0.0
    return float(np.max(np.abs(audio_data)))


def to_mono(audio_data: np.ndarray) -> np.ndarray:
    """Average (n_samples, n_channels) input down to one channel."""
    audio_data = np.asarray(audio_data, dtype=np.float32)
    if audio_data.ndim == 1:
        return audio_data
    return audio_data.mean(axis=1).astype(np.float32)
