"""
Acoustic + semantic biomarker fusion.

Fusion strategy:
- Confidence-weighted linear blend per axis (stress, fatigue)
- Semantic absent or at zero confidence: the acoustic result is returned
  unchanged (score and confidence)
- Fused confidence is the confidence-weighted mean of the source
  confidences, shrunk by source disagreement, so it never exceeds the
  larger input confidence

Session lifecycle:
- Acoustic processing completes -> SessionAcousticMetrics (acoustic-only)
- Semantic analysis resolves    -> exactly one upgrade to blended
- Timeout, cancellation, errors -> acoustic-only metrics stay final

The semantic collaborator is asynchronous and may never answer. Each
session gets a CancellationToken; results are written only if the token
is still live and the session id is still current.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from exceptions import InvalidStateTransition, SemanticAnalysisUnavailable
from fusion.semantic import SemanticAnalysis, SemanticRequest
from scoring.biomarkers import BiomarkerExplanations, VoiceMetrics
from scoring.quality import VoiceDataQuality
from scoring.thresholds import fatigue_level, stress_level

logger = logging.getLogger(__name__)

DISAGREEMENT_PENALTY = 0.5


@dataclass(frozen=True)
class ScoreSignal:
    """One source's opinion on one axis."""
    score: float
    confidence: float


@dataclass(frozen=True)
class FusedScore:
    score: float
    level: str
    confidence: float


@dataclass(frozen=True)
class FusionResult:
    stress: FusedScore
    fatigue: FusedScore
    confidence: float
    semantic_used: bool


def _level(dimension: str, score: float) -> str:
    return stress_level(score) if dimension == 'stress' else fatigue_level(score)


def fuse_axis(
    acoustic: ScoreSignal,
    semantic: Optional[ScoreSignal],
    dimension: str = 'stress',
    disagreement_penalty: float = DISAGREEMENT_PENALTY
) -> FusedScore:
    """
    Blend one axis.

    score      = (a.score * a.conf + s.score * s.conf) / (a.conf + s.conf)
    confidence = (a.conf^2 + s.conf^2) / (a.conf + s.conf)
                 * (1 - penalty * |a.score - s.score| / 100 * s.conf / (a.conf + s.conf))
    """
    if semantic is None or semantic.confidence <= 0:
        return FusedScore(
            score=acoustic.score,
            level=_level(dimension, acoustic.score),
            confidence=acoustic.confidence,
        )

    a_conf = max(0.0, acoustic.confidence)
    s_conf = min(1.0, semantic.confidence)
    total = a_conf + s_conf

    score = (acoustic.score * a_conf + semantic.score * s_conf) / total
    score = min(100.0, max(0.0, score))

    weighted_conf = (a_conf ** 2 + s_conf ** 2) / total
    disagreement = abs(acoustic.score - semantic.score) / 100.0
    confidence = weighted_conf * (1.0 - disagreement_penalty * disagreement * s_conf / total)

    score = round(score, 1)
    return FusedScore(score=score, level=_level(dimension, score), confidence=confidence)


def fuse(
    acoustic: VoiceMetrics,
    semantic: Optional[SemanticAnalysis],
    disagreement_penalty: float = DISAGREEMENT_PENALTY
) -> FusionResult:
    """Fuse both axes of an acoustic result with an optional semantic analysis."""
    axes = {}
    for dimension in ('stress', 'fatigue'):
        acoustic_signal = ScoreSignal(getattr(acoustic, f'{dimension}_score'), acoustic.confidence)
        semantic_signal = None
        if semantic is not None:
            semantic_signal = ScoreSignal(semantic.axis_score(dimension), semantic.axis_confidence(dimension))
        axes[dimension] = fuse_axis(acoustic_signal, semantic_signal, dimension, disagreement_penalty)

    semantic_used = semantic is not None and any(
        semantic.axis_confidence(d) > 0 for d in ('stress', 'fatigue')
    )
    if semantic_used:
        confidence = (axes['stress'].confidence + axes['fatigue'].confidence) / 2
    else:
        confidence = acoustic.confidence

    return FusionResult(
        stress=axes['stress'],
        fatigue=axes['fatigue'],
        confidence=confidence,
        semantic_used=semantic_used,
    )


@dataclass(frozen=True)
class SessionAcousticMetrics:
    """
    Composite metrics for one check-in session.

    Starts acoustic-only; with_semantic() returns the single blended
    upgrade. A blended record cannot be upgraded again.
    """
    session_id: str
    stress_score: float
    fatigue_score: float
    stress_level: str
    fatigue_level: str
    confidence: float
    acoustic_stress_score: float
    acoustic_fatigue_score: float
    acoustic_confidence: float
    analyzed_at: str
    semantic_stress_score: Optional[float] = None
    semantic_fatigue_score: Optional[float] = None
    semantic_confidence: Optional[float] = None
    semantic_source: Optional[str] = None
    explanations: Optional[BiomarkerExplanations] = None
    quality: Optional[VoiceDataQuality] = None
    blended: bool = False

    @classmethod
    def from_acoustic(cls, session_id: str, metrics: VoiceMetrics) -> 'SessionAcousticMetrics':
        return cls(
            session_id=session_id,
            stress_score=metrics.stress_score,
            fatigue_score=metrics.fatigue_score,
            stress_level=metrics.stress_level,
            fatigue_level=metrics.fatigue_level,
            confidence=metrics.confidence,
            acoustic_stress_score=metrics.stress_score,
            acoustic_fatigue_score=metrics.fatigue_score,
            acoustic_confidence=metrics.confidence,
            analyzed_at=metrics.analyzed_at,
            explanations=metrics.explanations,
            quality=metrics.quality,
        )

    def acoustic_metrics(self) -> VoiceMetrics:
        return VoiceMetrics(
            stress_score=self.acoustic_stress_score,
            fatigue_score=self.acoustic_fatigue_score,
            stress_level=stress_level(self.acoustic_stress_score),
            fatigue_level=fatigue_level(self.acoustic_fatigue_score),
            confidence=self.acoustic_confidence,
            analyzed_at=self.analyzed_at,
            explanations=self.explanations,
            quality=self.quality,
        )

    def with_semantic(
        self,
        semantic: SemanticAnalysis,
        disagreement_penalty: float = DISAGREEMENT_PENALTY
    ) -> 'SessionAcousticMetrics':
        """
        Upgrade to blended metrics.

        Raises:
            InvalidStateTransition: If this record is already blended
        """
        if self.blended:
            raise InvalidStateTransition('blended', 'blended')

        result = fuse(self.acoustic_metrics(), semantic, disagreement_penalty)
        return SessionAcousticMetrics(
            session_id=self.session_id,
            stress_score=result.stress.score,
            fatigue_score=result.fatigue.score,
            stress_level=result.stress.level,
            fatigue_level=result.fatigue.level,
            confidence=result.confidence,
            acoustic_stress_score=self.acoustic_stress_score,
            acoustic_fatigue_score=self.acoustic_fatigue_score,
            acoustic_confidence=self.acoustic_confidence,
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            semantic_stress_score=semantic.stress_score,
            semantic_fatigue_score=semantic.fatigue_score,
            semantic_confidence=semantic.confidence,
            semantic_source=semantic.source,
            explanations=self.explanations,
            quality=self.quality,
            blended=True,
        )

    def to_dict(self) -> Dict:
        return {
            'session_id': self.session_id,
            'stress_score': self.stress_score,
            'fatigue_score': self.fatigue_score,
            'stress_level': self.stress_level,
            'fatigue_level': self.fatigue_level,
            'confidence': self.confidence,
            'acoustic': {
                'stress_score': self.acoustic_stress_score,
                'fatigue_score': self.acoustic_fatigue_score,
                'confidence': self.acoustic_confidence,
            },
            'semantic': None if not self.blended else {
                'stress_score': self.semantic_stress_score,
                'fatigue_score': self.semantic_fatigue_score,
                'confidence': self.semantic_confidence,
                'source': self.semantic_source,
            },
            'explanations': self.explanations.to_dict() if self.explanations else None,
            'quality': self.quality.to_dict() if self.quality else None,
            'blended': self.blended,
            'analyzed_at': self.analyzed_at,
        }


class CancellationToken:
    """Cooperative cancellation flag shared with the semantic collaborator."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()


@dataclass
class _ActiveSession:
    metrics: SessionAcousticMetrics
    token: CancellationToken = field(default_factory=CancellationToken)
    # True once the semantic outcome is final; later results are ignored
    resolved: bool = False


class SemanticFusionCoordinator:
    """
    Owns the current session's composite metrics and applies the one
    semantic upgrade when (and if) it arrives.

    Usage:
        coordinator = SemanticFusionCoordinator(analyzer, config)
        coordinator.begin_session(session_id, voice_metrics)
        final = await coordinator.resolve(SemanticRequest(session_id, transcript))
    """

    def __init__(
        self,
        analyzer,
        config: Optional[Dict] = None,
        on_update: Optional[Callable[[SessionAcousticMetrics], None]] = None
    ):
        fusion_config = (config or {}).get('fusion', {})

        self.analyzer = analyzer
        self.timeout_sec = fusion_config.get('semantic_timeout_sec', 10.0)
        self.disagreement_penalty = fusion_config.get('disagreement_penalty', DISAGREEMENT_PENALTY)
        self.on_update = on_update

        self._active: Optional[_ActiveSession] = None

        logger.info(f"Semantic fusion initialized (timeout={self.timeout_sec}s)")

    @property
    def current(self) -> Optional[SessionAcousticMetrics]:
        return self._active.metrics if self._active else None

    def begin_session(self, session_id: str, metrics: VoiceMetrics) -> SessionAcousticMetrics:
        """Start a session; any in-flight analysis for the previous one is cancelled."""
        if self._active is not None:
            self._active.token.cancel(f"superseded by {session_id}")

        composite = SessionAcousticMetrics.from_acoustic(session_id, metrics)
        self._active = _ActiveSession(metrics=composite)
        self._publish(composite)
        return composite

    def token_for(self, session_id: str) -> Optional[CancellationToken]:
        if self._active and self._active.metrics.session_id == session_id:
            return self._active.token
        return None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._active is not None:
            self._active.token.cancel(reason)

    async def resolve(self, request: SemanticRequest) -> Optional[SessionAcousticMetrics]:
        """
        Run semantic analysis for request.session_id and fuse the result.

        Returns:
            The session's metrics after this call. Acoustic-only when the
            collaborator times out, fails or the session moved on.
        """
        active = self._active
        if active is None or active.metrics.session_id != request.session_id:
            logger.warning(f"No active session '{request.session_id}', skipping semantic analysis")
            return self.current

        if active.resolved:
            logger.info(f"Session {request.session_id} already resolved; skipping semantic analysis")
            return self.current

        token = active.token
        try:
            semantic = await asyncio.wait_for(
                self.analyzer.analyze(request, token),
                timeout=self.timeout_sec
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Semantic analysis timed out after {self.timeout_sec:.1f}s; "
                f"keeping acoustic-only metrics for {request.session_id}"
            )
            self._finalize(active, "timed out")
            return self.current
        except asyncio.CancelledError:
            if token.cancelled:
                logger.info(f"Semantic analysis cancelled for {request.session_id}: {token.reason}")
                return self.current
            raise
        except SemanticAnalysisUnavailable as e:
            logger.warning(f"Semantic analysis unavailable: {e}; keeping acoustic-only metrics")
            self._finalize(active, "semantic analysis unavailable")
            return self.current
        except Exception as e:
            logger.warning(f"Semantic analysis failed: {e}; keeping acoustic-only metrics", exc_info=True)
            self._finalize(active, "semantic analysis failed")
            return self.current

        return self._apply(request.session_id, token, semantic)

    @staticmethod
    def _finalize(active: _ActiveSession, reason: str) -> None:
        """Acoustic-only metrics become final; a collaborator still polling the token stops."""
        active.resolved = True
        active.token.cancel(reason)

    def _apply(
        self,
        session_id: str,
        token: CancellationToken,
        semantic: Optional[SemanticAnalysis]
    ) -> Optional[SessionAcousticMetrics]:
        active = self._active

        if token.cancelled or active is None or active.metrics.session_id != session_id:
            logger.info(f"Dropping stale semantic result for {session_id}")
            return self.current

        if active.resolved or active.metrics.blended:
            logger.warning(f"Session {session_id} already resolved; ignoring second semantic result")
            return self.current

        if semantic is None or semantic.confidence <= 0:
            logger.info(f"Semantic result for {session_id} carries no signal; acoustic-only is final")
            active.resolved = True
            return self.current

        blended = active.metrics.with_semantic(semantic, self.disagreement_penalty)
        active.metrics = blended
        active.resolved = True

        logger.info(
            f"Blended session {session_id}: stress={blended.stress_score:.1f} ({blended.stress_level}), "
            f"fatigue={blended.fatigue_score:.1f} ({blended.fatigue_level}), "
            f"confidence={blended.confidence:.2f}"
        )
        self._publish(blended)
        return blended

    def _publish(self, metrics: SessionAcousticMetrics) -> None:
        if self.on_update is not None:
            self.on_update(metrics)
