"""
Check-in orchestration: capture -> process -> score -> fuse.

One CheckInPipeline serves one user. Each analyzed recording becomes a
session with its own id; starting a new session cancels any semantic
analysis still running for the previous one.

Error policy:
- Capture, VAD and feature errors abort the recording (state -> error)
- Insufficient speech returns to idle with a "speak longer" outcome
- Settings read/write failures and semantic failures only add warnings
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import numpy as np

from audio_pipeline.aggregation import FeatureAccumulator
from audio_pipeline.capture import AudioCapture
from audio_pipeline.features import AudioFeatures
from audio_pipeline.processor import AudioProcessor, InsufficientSpeech, ProcessingResult
from exceptions import AudioPipelineError, BaselineTooShort, CalibrationError, CalibrationWriteFailed
from fusion.biomarker_fusion import SemanticFusionCoordinator, SessionAcousticMetrics
from fusion.mismatch import (
    MismatchDetector,
    MismatchResult,
    VoicePatterns,
    features_to_patterns,
    should_run_mismatch_detection,
)
from fusion.semantic import KeywordSemanticAnalyzer, SemanticRequest
from scoring.biomarkers import BiomarkerScorer, VoiceMetrics
from scoring.calibration import (
    BiomarkerCalibration,
    CalibrationRepository,
    CheckInSelfReport,
    PersonalizationState,
    VoiceBaseline,
    create_baseline,
)
from scoring.thresholds import BASELINE_MIN_SPEECH_SECONDS
from session.state_machine import PipelineState, PipelineStateMachine

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    """Outcome of analyzing one recording."""
    session_id: str
    outcome: str  # 'scored' or 'insufficient_speech'
    metrics: Optional[VoiceMetrics] = None
    session_metrics: Optional[SessionAcousticMetrics] = None
    processing: Optional[ProcessingResult] = None
    insufficient: Optional[InsufficientSpeech] = None
    mismatch: Optional[MismatchResult] = None
    patterns: Optional[VoicePatterns] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = {
            'session_id': self.session_id,
            'outcome': self.outcome,
            'warnings': list(self.warnings),
        }
        if self.insufficient is not None:
            data['insufficient_speech'] = {
                'speech_seconds': self.insufficient.speech_seconds,
                'required_seconds': self.insufficient.required_seconds,
                'message': self.insufficient.message,
            }
        if self.metrics is not None:
            data['metrics'] = self.metrics.to_dict()
        if self.session_metrics is not None:
            data['session_metrics'] = self.session_metrics.to_dict()
        if self.processing is not None:
            data['features'] = self.processing.features.to_dict()
            data['metadata'] = self.processing.metadata.to_dict()
        if self.patterns is not None:
            data['voice_patterns'] = self.patterns.to_dict()
        if self.mismatch is not None:
            data['mismatch'] = self.mismatch.to_dict()
        return data


def new_session_id() -> str:
    return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


class CheckInPipeline:
    """
    Usage:
        pipeline = CheckInPipeline(config, CalibrationRepository(store))
        result = pipeline.analyze(audio, 16000, transcript="I'm fine")
        final = await pipeline.resolve_semantic(result.session_id, transcript)
        pipeline.submit_self_report(CheckInSelfReport(20, 40, now))
    """

    def __init__(
        self,
        config: Dict,
        repository: CalibrationRepository,
        processor: Optional[AudioProcessor] = None,
        scorer: Optional[BiomarkerScorer] = None,
        semantic_analyzer=None,
        mismatch_detector: Optional[MismatchDetector] = None,
        capture_factory: Optional[Callable[[], AudioCapture]] = None
    ):
        self.config = config or {}
        self.repository = repository
        self.processor = processor or AudioProcessor(self.config)
        self.scorer = scorer or BiomarkerScorer(self.config)
        self.mismatch_detector = mismatch_detector or MismatchDetector(self.config)
        self.coordinator = SemanticFusionCoordinator(
            semantic_analyzer or KeywordSemanticAnalyzer(),
            self.config
        )
        self.capture_factory = capture_factory or (lambda: AudioCapture(self.config))

        self.state_machine = PipelineStateMachine()
        self.accumulator = FeatureAccumulator()
        self.last_result: Optional[CheckInResult] = None
        self._capture: Optional[AudioCapture] = None

    @property
    def state(self) -> PipelineState:
        return self.state_machine.state

    # Capture

    def start_capture(self) -> None:
        capture = self.capture_factory()
        if self.state == PipelineState.ERROR:
            self.state_machine.reset()
        self.state_machine.transition(PipelineState.CAPTURING)
        try:
            capture.start()
        except Exception as e:
            self.state_machine.fail(e)
            raise
        self._capture = capture

    def stop_capture(self, transcript: Optional[str] = None) -> CheckInResult:
        """Stop the microphone and analyze everything captured so far."""
        capture, self._capture = self._capture, None
        if capture is None:
            raise RuntimeError("No capture in progress")
        try:
            audio = capture.stop()
        except Exception as e:
            self.state_machine.fail(e)
            raise
        return self.analyze(audio, capture.sample_rate, transcript=transcript)

    def cancel_capture(self) -> None:
        """Stop the microphone and discard the recording."""
        capture, self._capture = self._capture, None
        if capture is not None:
            try:
                capture.stop()
            except AudioPipelineError as e:
                # Recording is discarded either way
                logger.warning(f"Capture cancelled after stream error: {e}")
            except Exception as e:
                self.state_machine.fail(e)
                raise
        if self.state == PipelineState.CAPTURING:
            self.state_machine.transition(PipelineState.IDLE)

    # Analysis

    def analyze(
        self,
        audio: np.ndarray,
        sample_rate: int,
        transcript: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> CheckInResult:
        """
        Process and score one recording.

        Raises:
            AudioPipelineError: Capture/VAD/feature failure (state -> error)
        """
        session_id = session_id or new_session_id()
        if self.state == PipelineState.ERROR:
            self.state_machine.reset()
        self.state_machine.transition(PipelineState.PROCESSING)

        try:
            outcome = self.processor.process(audio, sample_rate)
        except AudioPipelineError as e:
            logger.error(f"Recording aborted: {e}")
            self.state_machine.fail(e)
            raise
        except Exception as e:
            logger.error(f"Processing failed: {e}", exc_info=True)
            self.state_machine.fail(e)
            raise

        if isinstance(outcome, InsufficientSpeech):
            self.state_machine.transition(PipelineState.IDLE)
            result = CheckInResult(session_id=session_id, outcome='insufficient_speech', insufficient=outcome)
            self.last_result = result
            return result

        self.state_machine.transition(PipelineState.SCORING)
        warnings: List[str] = []
        personalization = self._load_personalization(warnings)
        try:
            metrics = self.scorer.score(
                outcome.features,
                quality=outcome.quality,
                baseline=personalization.baseline,
                calibration=personalization.calibration,
            )

            session_metrics = self.coordinator.begin_session(session_id, metrics)
            self.accumulator.add(outcome.features, weight=outcome.metadata.speech_duration_sec)

            result = CheckInResult(
                session_id=session_id,
                outcome='scored',
                metrics=metrics,
                session_metrics=session_metrics,
                processing=outcome,
                patterns=features_to_patterns(outcome.features),
                warnings=warnings,
            )
            if transcript and should_run_mismatch_detection(transcript, outcome.features):
                result.mismatch = self.mismatch_detector.detect(transcript, outcome.features, metrics)
        except Exception as e:
            logger.error(f"Scoring failed: {e}", exc_info=True)
            self.state_machine.fail(e)
            raise

        self.state_machine.transition(PipelineState.COMPLETE)
        self.last_result = result
        return result

    def _load_personalization(self, warnings: List[str]) -> PersonalizationState:
        """Baseline and calibration, or neither when the settings store is unreadable."""
        try:
            return self.repository.load()
        except (sqlite3.Error, OSError, CalibrationError) as e:
            message = f"Personal calibration unavailable, using population thresholds: {e}"
            logger.warning(message)
            warnings.append(message)
            return PersonalizationState(baseline=None, calibration=None)

    async def resolve_semantic(self, session_id: str, transcript: str) -> Optional[SessionAcousticMetrics]:
        """Run semantic analysis for a scored session and fuse it in (once)."""
        final = await self.coordinator.resolve(SemanticRequest(session_id=session_id, transcript=transcript))
        if self.last_result is not None and self.last_result.session_id == session_id:
            self.last_result.session_metrics = final
        return final

    def cancel_semantic(self, reason: str = "cancelled by user") -> None:
        self.coordinator.cancel(reason)

    def session_features(self) -> Optional[AudioFeatures]:
        """Speech-weighted average of every scored recording so far."""
        return self.accumulator.average()

    # Personalization

    def submit_self_report(
        self,
        report: CheckInSelfReport,
        metrics: Optional[VoiceMetrics] = None
    ) -> Optional[BiomarkerCalibration]:
        """
        Update calibration from a self-report.

        Returns:
            New calibration, or None when there is nothing to calibrate
            against or the write failed (a warning is recorded instead)
        """
        metrics = metrics or (self.last_result.metrics if self.last_result else None)
        if metrics is None:
            logger.warning("Self-report received without acoustic metrics; calibration unchanged")
            return None

        try:
            return self.repository.update_from_self_report(metrics, report)
        except CalibrationWriteFailed as e:
            message = f"Calibration not saved: {e}"
            logger.warning(message)
            if self.last_result is not None:
                self.last_result.warnings.append(message)
            return None

    def save_baseline(self, audio: np.ndarray, sample_rate: int, prompt_id: str = 'default') -> VoiceBaseline:
        """
        Record a personal baseline from a reading of the baseline prompt.

        Raises:
            BaselineTooShort: If the recording has under 8s of speech
            CalibrationWriteFailed: If the baseline could not be stored
        """
        outcome = self.processor.process(audio, sample_rate)
        if isinstance(outcome, InsufficientSpeech):
            raise BaselineTooShort(outcome.speech_seconds, BASELINE_MIN_SPEECH_SECONDS)

        baseline = create_baseline(
            outcome.features,
            outcome.metadata.speech_duration_sec,
            prompt_id=prompt_id,
        )
        self.repository.save_baseline(baseline)
        return baseline
