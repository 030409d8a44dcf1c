"""
Biomarker fusion module.

This package combines how the user sounded with what they said:
- Confidence-weighted acoustic/semantic blend, acoustic-only fallback
- One-time upgrade of a session's metrics when semantic analysis resolves
- Say/sound mismatch detection with a hint for the conversational assistant

Semantic analysis is asynchronous and may never arrive; acoustic metrics
are always a valid final answer.
"""

from .semantic import (
    KeywordSemanticAnalyzer,
    SemanticAnalysis,
    SemanticRequest,
    classify_sentiment,
    infer_semantic_biomarkers,
    merge_semantic_analyses,
)
from .biomarker_fusion import (
    CancellationToken,
    FusedScore,
    ScoreSignal,
    SemanticFusionCoordinator,
    SessionAcousticMetrics,
    fuse,
    fuse_axis,
)
from .mismatch import (
    MismatchDetector,
    MismatchResult,
    VoicePatterns,
    features_to_patterns,
    should_run_mismatch_detection,
)

__all__ = [
    'KeywordSemanticAnalyzer',
    'SemanticAnalysis',
    'SemanticRequest',
    'classify_sentiment',
    'infer_semantic_biomarkers',
    'merge_semantic_analyses',
    'CancellationToken',
    'FusedScore',
    'ScoreSignal',
    'SemanticFusionCoordinator',
    'SessionAcousticMetrics',
    'fuse',
    'fuse_axis',
    'MismatchDetector',
    'MismatchResult',
    'VoicePatterns',
    'features_to_patterns',
    'should_run_mismatch_detection',
]
