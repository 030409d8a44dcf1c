"""Shared fixtures: synthetic voice-like signals and a fast pipeline config."""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from audio_pipeline.features import features_from_values
from utils.config_loader import load_config, merge_config

SAMPLE_RATE = 16000


def synth_speech(
    duration: float,
    sample_rate: int = SAMPLE_RATE,
    syllable_rate: float = 4.0,
    f0: float = 150.0,
    amplitude: float = 0.3,
    vibrato: float = 0.0
) -> np.ndarray:
    """
    Harmonic tone with a raised-cosine syllable envelope.

    The envelope returns to zero once per syllable, so a duration that is a
    whole number of syllables starts and ends in silence.
    """
    t = np.arange(int(duration * sample_rate)) / sample_rate
    envelope = 0.5 * (1.0 - np.cos(2 * np.pi * syllable_rate * t))

    inst_f0 = f0 * (1.0 + vibrato * np.sin(2 * np.pi * 0.5 * t))
    phase = 2 * np.pi * np.cumsum(inst_f0) / sample_rate
    harmonics = sum(np.sin(k * phase) / k for k in range(1, 6))
    harmonics = harmonics / np.max(np.abs(harmonics))

    return (amplitude * envelope * harmonics).astype(np.float32)


def silence(duration: float, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    return np.zeros(int(duration * sample_rate), dtype=np.float32)


@pytest.fixture
def fast_config():
    """Default config with the offline energy VAD and yin pitch tracking."""
    return merge_config(load_config(), {
        'audio': {
            'vad': {'backend': 'energy'},
            'features': {'pitch_method': 'yin'},
        }
    })


@pytest.fixture
def make_speech():
    return synth_speech


@pytest.fixture
def make_silence():
    return silence


@pytest.fixture
def make_features():
    """AudioFeatures from a partial dict (missing fields are 0)."""
    return features_from_values
