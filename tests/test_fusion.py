"""
Unit tests for semantic analysis and acoustic/semantic fusion.
"""

import asyncio

import pytest # pyright: ignore[reportMissingImports]

from exceptions import InvalidStateTransition, SemanticAnalysisUnavailable
from fusion.biomarker_fusion import (
    ScoreSignal,
    SemanticFusionCoordinator,
    SessionAcousticMetrics,
    fuse,
    fuse_axis,
)
from fusion.semantic import (
    KeywordSemanticAnalyzer,
    SemanticAnalysis,
    SemanticRequest,
    classify_sentiment,
    infer_semantic_biomarkers,
    merge_semantic_analyses,
)
from scoring.biomarkers import VoiceMetrics
from scoring.thresholds import fatigue_level, stress_level


def voice_metrics(stress: float = 40.0, fatigue: float = 30.0, confidence: float = 0.6) -> VoiceMetrics:
    return VoiceMetrics(
        stress_score=stress,
        fatigue_score=fatigue,
        stress_level=stress_level(stress),
        fatigue_level=fatigue_level(fatigue),
        confidence=confidence,
        analyzed_at='2026-10-18T09:00:00+00:00',
    )


class SlowAnalyzer:
    """Semantic collaborator that answers after a delay."""

    def __init__(self, result: SemanticAnalysis, delay: float):
        self.result = result
        self.delay = delay
        self.calls = 0

    async def analyze(self, request, token=None):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.result


class BrokenAnalyzer:
    def __init__(self, error: Exception):
        self.error = error

    async def analyze(self, request, token=None):
        raise self.error


EXHAUSTED = SemanticAnalysis(stress_score=50.0, fatigue_score=95.0, confidence=0.95,
                             stress_confidence=0.0, fatigue_confidence=0.95)


class TestFuseAxis:
    """Test the confidence-weighted blend."""

    def test_no_semantic_returns_acoustic(self):
        acoustic = ScoreSignal(score=62.4, confidence=0.37)
        fused = fuse_axis(acoustic, None)

        assert fused.score == 62.4
        assert fused.confidence == 0.37
        assert fused.level == 'elevated'

    def test_zero_confidence_semantic_returns_acoustic(self):
        acoustic = ScoreSignal(score=62.4, confidence=0.37)
        fused = fuse_axis(acoustic, ScoreSignal(score=5.0, confidence=0.0), 'fatigue')

        assert fused.score == 62.4
        assert fused.confidence == 0.37
        assert fused.level == 'tired'

    def test_weighted_blend(self):
        fused = fuse_axis(ScoreSignal(80.0, 0.6), ScoreSignal(40.0, 0.3))

        assert fused.score == pytest.approx(66.7)
        # (0.36 + 0.09) / 0.9 = 0.5, shrunk by 0.5 * 0.4 * (0.3 / 0.9)
        assert fused.confidence == pytest.approx(0.5 * (1 - 0.5 * 0.4 / 3))

    def test_disagreement_lowers_confidence(self):
        agree = fuse_axis(ScoreSignal(70.0, 0.6), ScoreSignal(70.0, 0.6))
        disagree = fuse_axis(ScoreSignal(70.0, 0.6), ScoreSignal(10.0, 0.6))

        assert agree.confidence == pytest.approx(0.6)
        assert disagree.confidence < agree.confidence

    def test_confidence_never_exceeds_inputs(self):
        for a_score, a_conf, s_score, s_conf in [
            (10.0, 0.9, 90.0, 0.9),
            (50.0, 0.1, 50.0, 1.0),
            (100.0, 0.0, 0.0, 0.5),
            (30.0, 0.7, 35.0, 0.2),
        ]:
            fused = fuse_axis(ScoreSignal(a_score, a_conf), ScoreSignal(s_score, s_conf))
            assert fused.confidence <= max(a_conf, s_conf) + 1e-9
            assert 0.0 <= fused.score <= 100.0

    def test_fuse_without_semantic(self):
        metrics = voice_metrics()
        result = fuse(metrics, None)

        assert not result.semantic_used
        assert result.stress.score == metrics.stress_score
        assert result.fatigue.score == metrics.fatigue_score
        assert result.confidence == metrics.confidence


class TestSessionAcousticMetrics:
    """Test the one-time acoustic-only -> blended upgrade."""

    def test_acoustic_only(self):
        session = SessionAcousticMetrics.from_acoustic('s1', voice_metrics())

        assert not session.blended
        assert session.semantic_confidence is None
        assert session.to_dict()['semantic'] is None

    def test_single_upgrade(self):
        session = SessionAcousticMetrics.from_acoustic('s1', voice_metrics())
        blended = session.with_semantic(EXHAUSTED)

        assert blended.blended
        assert blended.acoustic_fatigue_score == 30.0
        assert blended.fatigue_score == pytest.approx(69.8)
        assert blended.stress_score == 40.0
        with pytest.raises(InvalidStateTransition):
            blended.with_semantic(EXHAUSTED)


class TestSemanticFusionCoordinator:
    """Test timeout, staleness and cancellation handling."""

    def test_default_timeout(self):
        assert SemanticFusionCoordinator(KeywordSemanticAnalyzer()).timeout_sec == 10.0

    def test_blends_once(self):
        updates = []
        coordinator = SemanticFusionCoordinator(KeywordSemanticAnalyzer(), on_update=updates.append)
        coordinator.begin_session('s1', voice_metrics())

        request = SemanticRequest('s1', "I'm completely exhausted today")
        final = asyncio.run(coordinator.resolve(request))

        assert final.blended
        assert final.fatigue_score == pytest.approx(69.8)
        assert final.fatigue_level == 'tired'
        assert final.stress_score == 40.0
        assert len(updates) == 2

        # A second answer for the same session is ignored
        again = asyncio.run(coordinator.resolve(request))
        assert again is final
        assert len(updates) == 2

    def test_timeout_keeps_acoustic(self):
        updates = []
        config = {'fusion': {'semantic_timeout_sec': 0.05}}
        coordinator = SemanticFusionCoordinator(SlowAnalyzer(EXHAUSTED, delay=1.0), config, updates.append)
        initial = coordinator.begin_session('s1', voice_metrics())

        final = asyncio.run(coordinator.resolve(SemanticRequest('s1', 'anything')))

        assert final is initial
        assert not final.blended
        assert len(updates) == 1

    def test_timeout_is_final(self):
        """A late second attempt for a timed-out session never blends."""
        analyzer = SlowAnalyzer(EXHAUSTED, delay=1.0)
        config = {'fusion': {'semantic_timeout_sec': 0.05}}
        coordinator = SemanticFusionCoordinator(analyzer, config)
        initial = coordinator.begin_session('s1', voice_metrics())

        asyncio.run(coordinator.resolve(SemanticRequest('s1', 'x')))
        assert coordinator.token_for('s1').cancelled
        assert coordinator.token_for('s1').reason == "timed out"

        analyzer.delay = 0
        final = asyncio.run(coordinator.resolve(SemanticRequest('s1', 'x')))

        assert final is initial
        assert not final.blended
        assert analyzer.calls == 1

    def test_failure_is_final(self):
        coordinator = SemanticFusionCoordinator(BrokenAnalyzer(RuntimeError("bad payload")))
        initial = coordinator.begin_session('s1', voice_metrics())
        asyncio.run(coordinator.resolve(SemanticRequest('s1', 'x')))

        coordinator.analyzer = SlowAnalyzer(EXHAUSTED, delay=0)
        final = asyncio.run(coordinator.resolve(SemanticRequest('s1', 'x')))

        assert final is initial
        assert coordinator.analyzer.calls == 0

    @pytest.mark.parametrize("error", [
        SemanticAnalysisUnavailable("assistant offline"),
        RuntimeError("bad payload"),
    ])
    def test_analyzer_failure_keeps_acoustic(self, error):
        coordinator = SemanticFusionCoordinator(BrokenAnalyzer(error))
        initial = coordinator.begin_session('s1', voice_metrics())

        assert asyncio.run(coordinator.resolve(SemanticRequest('s1', 'x'))) is initial

    def test_no_signal_keeps_acoustic(self):
        coordinator = SemanticFusionCoordinator(KeywordSemanticAnalyzer())
        initial = coordinator.begin_session('s1', voice_metrics())

        final = asyncio.run(coordinator.resolve(SemanticRequest('s1', 'the weather was nice')))
        assert final is initial

    def test_stale_result_dropped(self):
        """A result for a superseded session never touches the new one."""
        coordinator = SemanticFusionCoordinator(SlowAnalyzer(EXHAUSTED, delay=0.05))

        async def scenario():
            coordinator.begin_session('old', voice_metrics())
            pending = asyncio.ensure_future(coordinator.resolve(SemanticRequest('old', 'x')))
            await asyncio.sleep(0)
            coordinator.begin_session('new', voice_metrics(stress=20.0))
            return await pending

        final = asyncio.run(scenario())

        assert final.session_id == 'new'
        assert not final.blended
        assert coordinator.current.stress_score == 20.0

    def test_cancelled_session(self):
        coordinator = SemanticFusionCoordinator(KeywordSemanticAnalyzer())
        initial = coordinator.begin_session('s1', voice_metrics())
        coordinator.cancel("user closed the check-in")

        final = asyncio.run(coordinator.resolve(SemanticRequest('s1', "I'm exhausted")))

        assert final is initial
        assert coordinator.token_for('s1').reason == "user closed the check-in"

    def test_unknown_session(self):
        analyzer = SlowAnalyzer(EXHAUSTED, delay=0)
        coordinator = SemanticFusionCoordinator(analyzer)
        coordinator.begin_session('s1', voice_metrics())

        asyncio.run(coordinator.resolve(SemanticRequest('other', 'x')))
        assert analyzer.calls == 0


class TestKeywordSemantics:
    """Test keyword stress/fatigue inference."""

    def test_high_stress(self):
        result = infer_semantic_biomarkers("Honestly I'm so overwhelmed at work")
        assert result.stress_score == 95.0
        assert result.axis_confidence('stress') == 0.95
        assert result.axis_confidence('fatigue') == 0.0

    def test_negated_stress(self):
        result = infer_semantic_biomarkers("I'm not stressed at all")
        assert result.stress_score == 20.0

    def test_word_boundaries(self):
        result = infer_semantic_biomarkers("My dad just retired")
        assert result.fatigue_score == 50.0
        assert result.confidence == 0.0

    def test_negation_within_two_words(self):
        result = infer_semantic_biomarkers("not really tired")
        assert result.fatigue_confidence == 0.0

    def test_empty_text(self):
        result = infer_semantic_biomarkers("")
        assert (result.stress_score, result.fatigue_score, result.confidence) == (50.0, 50.0, 0.0)

    def test_merge_keeps_strongest(self):
        first = infer_semantic_biomarkers("I am exhausted")
        merged = merge_semantic_analyses(first, infer_semantic_biomarkers("the meeting went long"))
        assert merged.fatigue_score == 95.0
        assert merged.axis_confidence('fatigue') == 0.95

    def test_analyzer_merges_history(self):
        analyzer = KeywordSemanticAnalyzer()
        analyzer.infer("I'm exhausted")
        result = analyzer.infer("and a bit anxious")
        assert result.fatigue_score == 95.0
        assert result.stress_score == 88.0


class TestSentiment:
    """Test transcript sentiment."""

    def test_positive(self):
        result = classify_sentiment("I'm doing great today, really good")
        assert result.signal == 'positive'
        assert result.confidence == pytest.approx(0.8)

    def test_negative(self):
        result = classify_sentiment("I feel terrible and stressed")
        assert result.signal == 'negative'
        assert result.confidence == pytest.approx(0.8)

    def test_negation_flips(self):
        assert classify_sentiment("it was not good at all").signal == 'negative'

    def test_dismissive(self):
        result = classify_sentiment("I'm fine, whatever")
        assert result.signal == 'neutral'
        assert result.dismissive
        assert result.confidence == pytest.approx(0.7)

    def test_empty(self):
        result = classify_sentiment("")
        assert result.signal == 'neutral'
        assert result.confidence == 0.0


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
