"""
Error hierarchy for the voice biomarker pipeline.

Every stage raises typed subclasses of VoiceBiomarkerError so callers can
decide per stage whether to abort the recording or degrade gracefully.

Hierarchy:
    VoiceBiomarkerError
    ├── AudioPipelineError
    │   ├── CaptureError
    │   │   ├── DeviceUnavailable
    │   │   └── StreamInterrupted
    │   ├── InvalidAudio
    │   ├── RecordingTooLong
    │   └── VadModelUnavailable
    ├── SemanticAnalysisUnavailable
    ├── CalibrationError
    │   ├── CalibrationWriteFailed
    │   └── BaselineTooShort
    └── InvalidStateTransition

Insufficient speech is deliberately not in this list: it is an expected
outcome and is returned as audio_pipeline.processor.InsufficientSpeech.
"""

from typing import Optional

import numpy as np


class VoiceBiomarkerError(Exception):
    """Base class for all pipeline exceptions."""


# Audio stages

class AudioPipelineError(VoiceBiomarkerError):
    """Base for capture, segmentation and feature extraction errors."""


class CaptureError(AudioPipelineError):
    """Base for microphone capture errors. Never retried automatically."""


class DeviceUnavailable(CaptureError):
    """No input device, permission denied, or the stream could not be opened."""


class StreamInterrupted(CaptureError):
    """
    The input stream ended while capture was still running.

    Attributes:
        partial_audio: Samples captured before the interruption (may be empty)
    """

    def __init__(self, message: str, partial_audio: Optional[np.ndarray] = None):
        super().__init__(message)
        if partial_audio is None:
            partial_audio = np.zeros(0, dtype=np.float32)
        self.partial_audio = partial_audio


class InvalidAudio(AudioPipelineError):
    """Empty, non-finite or otherwise unusable audio buffer."""


class RecordingTooLong(AudioPipelineError):
    """Recording exceeds the configured maximum duration."""

    def __init__(self, duration_sec: float, max_duration_sec: float):
        super().__init__(
            f"Recording is {duration_sec:.1f}s, maximum is {max_duration_sec:.1f}s"
        )
        self.duration_sec = duration_sec
        self.max_duration_sec = max_duration_sec


class VadModelUnavailable(AudioPipelineError):
    """Neural VAD model could not be loaded or failed at inference."""


# Semantic fusion

class SemanticAnalysisUnavailable(VoiceBiomarkerError):
    """Semantic collaborator timed out, failed, or returned nothing usable."""


# Calibration

class CalibrationError(VoiceBiomarkerError):
    """Base for baseline and calibration persistence errors."""


class CalibrationWriteFailed(CalibrationError):
    """
    Writing calibration or baseline to the settings store failed.

    Attributes:
        previous: The value that remains in effect (may be None)
    """

    def __init__(self, message: str, previous=None):
        super().__init__(message)
        self.previous = previous


class BaselineTooShort(CalibrationError):
    """Baseline recording does not contain enough speech."""

    def __init__(self, speech_seconds: float, required_seconds: float):
        super().__init__(
            f"Baseline needs at least {required_seconds:.0f}s of speech "
            f"(got {speech_seconds:.1f}s)"
        )
        self.speech_seconds = speech_seconds
        self.required_seconds = required_seconds


# Session

class InvalidStateTransition(VoiceBiomarkerError):
    """Pipeline state machine received an event not allowed in its state."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition from '{current}' to '{target}'")
        self.current = current
        self.target = target
