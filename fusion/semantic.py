"""
Text-side signals: keyword biomarkers and transcript sentiment.

The external conversational assistant is the real semantic source; this
module provides the local keyword analyzer used when only a transcript is
available, plus the lightweight sentiment classifier the mismatch
detector needs.

Matching rules:
- Text is lower-cased and stripped of punctuation except apostrophes
- Terms match on word boundaries ("tired" does not match "retired")
- A term preceded by a negation within two words ("not really tired")
  is negated: keyword rules skip it, sentiment flips its polarity
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0

NEGATION_TOKENS = (
    "not", "no", "never", "dont", "don't", "do not", "isnt", "isn't",
    "arent", "aren't", "cant", "can't", "wasnt", "wasn't",
)

# (term, score, confidence); first matching tier wins
STRESS_HIGH = (
    ("overwhelmed", 95, 0.95), ("panicking", 98, 0.95), ("panic", 96, 0.9),
    ("burned out", 95, 0.9), ("burnt out", 95, 0.9), ("too much", 92, 0.85),
    ("can't cope", 96, 0.9), ("cant cope", 96, 0.9),
)
STRESS_MODERATE = (
    ("stressed", 90, 0.9), ("stress", 85, 0.8), ("anxious", 88, 0.9),
    ("anxiety", 88, 0.85), ("worried", 78, 0.75), ("nervous", 72, 0.7),
    ("tense", 78, 0.75), ("on edge", 82, 0.8), ("pressure", 78, 0.7),
)
STRESS_LOW = (
    ("not stressed", 20, 0.75), ("relaxed", 25, 0.6), ("calm", 30, 0.55),
    ("at ease", 30, 0.55),
)
FATIGUE_HIGH = (
    ("exhausted", 95, 0.95), ("sleep deprived", 95, 0.9), ("drained", 90, 0.85),
    ("wiped", 90, 0.85), ("burned out", 90, 0.85), ("burnt out", 90, 0.85),
    ("can't stay awake", 98, 0.9), ("cant stay awake", 98, 0.9),
)
FATIGUE_MODERATE = (
    ("tired", 82, 0.85), ("fatigued", 88, 0.9), ("fatigue", 82, 0.8),
    ("sleepy", 78, 0.8), ("low energy", 82, 0.8), ("run down", 82, 0.8),
    ("worn out", 88, 0.85),
)
FATIGUE_LOW = (
    ("not tired", 20, 0.75), ("rested", 25, 0.65), ("energized", 30, 0.65),
    ("slept well", 25, 0.65),
)

POSITIVE_KEYWORDS = (
    "fine", "good", "great", "okay", "alright", "well", "better", "excellent",
    "wonderful", "amazing", "fantastic", "happy", "relaxed", "calm",
    "peaceful", "energized", "excited", "rested",
)
NEGATIVE_KEYWORDS = (
    "tired", "exhausted", "stressed", "overwhelmed", "anxious", "worried",
    "sad", "depressed", "frustrated", "angry", "upset", "struggling",
    "difficult", "hard", "rough", "terrible", "awful", "bad",
)
DISMISSIVE_PHRASES = (
    "i'm fine", "im fine", "i'm okay", "im okay", "it's fine", "it's okay",
    "no big deal", "whatever", "doesn't matter", "i guess", "not really",
    "kind of", "sort of",
)


@dataclass(frozen=True)
class SemanticAnalysis:
    """
    Result of a semantic (text-based) biomarker analysis.

    Attributes:
        stress_score: 0-100
        fatigue_score: 0-100
        confidence: Overall confidence (0-1); 0 means "no signal"
        notes: Free-text notes from the analyzer
        stress_confidence: Per-axis override of confidence
        fatigue_confidence: Per-axis override of confidence
        source: 'keywords' or 'external'
    """
    stress_score: float
    fatigue_score: float
    confidence: float
    notes: str = ""
    stress_confidence: Optional[float] = None
    fatigue_confidence: Optional[float] = None
    source: str = "external"

    def axis_confidence(self, dimension: str) -> float:
        value = self.stress_confidence if dimension == 'stress' else self.fatigue_confidence
        return self.confidence if value is None else value

    def axis_score(self, dimension: str) -> float:
        return self.stress_score if dimension == 'stress' else self.fatigue_score


@dataclass(frozen=True)
class SemanticRequest:
    """Payload handed to a semantic analyzer."""
    session_id: str
    transcript: str = ""


@dataclass(frozen=True)
class SentimentResult:
    signal: str  # 'positive', 'neutral' or 'negative'
    confidence: float
    dismissive: bool
    positive_hits: int
    negative_hits: int


def normalize_text(text: str) -> str:
    text = (text or "").lower().replace("’", "'")
    text = re.sub(r"[^a-z0-9\s']", " ", text)
    return re.sub(r"\s+", " ", text).strip()


@lru_cache(maxsize=None)
def _term_pattern(term: str):
    escaped = re.escape(term).replace(r"\ ", r"\s+")
    return re.compile(rf"(?<![\w']){escaped}(?![\w'])")


@lru_cache(maxsize=None)
def _negated_pattern(term: str):
    escaped = re.escape(term).replace(r"\ ", r"\s+")
    negations = "|".join(re.escape(t).replace(r"\ ", r"\s+") for t in NEGATION_TOKENS)
    return re.compile(rf"(?<![\w'])(?:{negations})\s+(?:[\w']+\s+){{0,2}}{escaped}(?![\w'])")


def contains_term(text: str, term: str) -> bool:
    return _term_pattern(term).search(text) is not None


def is_negated(text: str, term: str) -> bool:
    return _negated_pattern(term).search(text) is not None


def _pick_rule(text: str, tiers: Sequence[Sequence[Tuple[str, int, float]]]):
    for rules in tiers:
        for term, score, confidence in rules:
            if not contains_term(text, term):
                continue
            # "not X" rules carry their own negation
            if not term.startswith("not ") and is_negated(text, term):
                continue
            return term, score, confidence
    return None


def infer_semantic_biomarkers(text: str) -> SemanticAnalysis:
    """Keyword stress/fatigue inference; no match gives score 50 at confidence 0."""
    normalized = normalize_text(text)

    stress_rule = _pick_rule(normalized, (STRESS_HIGH, STRESS_MODERATE, STRESS_LOW)) if normalized else None
    fatigue_rule = _pick_rule(normalized, (FATIGUE_HIGH, FATIGUE_MODERATE, FATIGUE_LOW)) if normalized else None

    stress_confidence = stress_rule[2] if stress_rule else 0.0
    fatigue_confidence = fatigue_rule[2] if fatigue_rule else 0.0

    matched = [rule[0] for rule in (stress_rule, fatigue_rule) if rule]
    return SemanticAnalysis(
        stress_score=float(stress_rule[1]) if stress_rule else NEUTRAL_SCORE,
        fatigue_score=float(fatigue_rule[1]) if fatigue_rule else NEUTRAL_SCORE,
        confidence=max(stress_confidence, fatigue_confidence),
        notes=f"matched: {', '.join(matched)}" if matched else "",
        stress_confidence=stress_confidence,
        fatigue_confidence=fatigue_confidence,
        source="keywords",
    )


def _dominant(prev_score, prev_conf, next_score, next_conf) -> Tuple[float, float]:
    prev_strength = min(1.0, max(0.0, prev_conf)) * abs(prev_score - NEUTRAL_SCORE)
    next_strength = min(1.0, max(0.0, next_conf)) * abs(next_score - NEUTRAL_SCORE)
    if next_strength >= prev_strength:
        return next_score, next_conf
    return prev_score, prev_conf


def merge_semantic_analyses(previous: Optional[SemanticAnalysis], latest: SemanticAnalysis) -> SemanticAnalysis:
    """Per axis, keep the reading that deviates most from neutral (weighted by confidence)."""
    if previous is None:
        return latest

    stress, stress_conf = _dominant(
        previous.stress_score, previous.axis_confidence('stress'),
        latest.stress_score, latest.axis_confidence('stress')
    )
    fatigue, fatigue_conf = _dominant(
        previous.fatigue_score, previous.axis_confidence('fatigue'),
        latest.fatigue_score, latest.axis_confidence('fatigue')
    )
    return SemanticAnalysis(
        stress_score=stress,
        fatigue_score=fatigue,
        confidence=max(stress_conf, fatigue_conf),
        notes=latest.notes or previous.notes,
        stress_confidence=stress_conf,
        fatigue_confidence=fatigue_conf,
        source=latest.source,
    )


def classify_sentiment(text: str) -> SentimentResult:
    """
    Lexicon sentiment of a transcript.

    Negated keywords flip polarity ("not good" counts as negative).
    Dismissive phrases ("I'm fine", "whatever") cancel positive hits, so
    a dismissive answer reads as neutral rather than positive.
    """
    normalized = normalize_text(text)
    positive = negative = dismissive = 0

    for keyword in POSITIVE_KEYWORDS:
        if contains_term(normalized, keyword):
            if is_negated(normalized, keyword):
                negative += 1
            else:
                positive += 1

    for keyword in NEGATIVE_KEYWORDS:
        if contains_term(normalized, keyword):
            if is_negated(normalized, keyword):
                positive += 1
            else:
                negative += 1

    for phrase in DISMISSIVE_PHRASES:
        if contains_term(normalized, phrase):
            dismissive += 1

    if dismissive:
        positive = max(0, positive - dismissive)

    margin = abs(positive - negative)
    if negative > positive:
        signal = 'negative'
        confidence = min(0.95, 0.5 + 0.15 * margin)
    elif positive > negative:
        signal = 'positive'
        confidence = min(0.95, 0.5 + 0.15 * margin)
    elif dismissive:
        signal = 'neutral'
        confidence = min(0.9, 0.5 + 0.1 * dismissive)
    else:
        signal = 'neutral'
        confidence = 0.3 if normalized else 0.0

    return SentimentResult(
        signal=signal,
        confidence=confidence,
        dismissive=dismissive > 0,
        positive_hits=positive,
        negative_hits=negative,
    )


class KeywordSemanticAnalyzer:
    """
    Local semantic collaborator backed by the keyword rules.

    Satisfies the analyzer interface used by SemanticFusionCoordinator:
        await analyzer.analyze(request, token) -> SemanticAnalysis
    Successive calls are merged so the strongest reading in a session wins.
    """

    def __init__(self):
        self._history: List[SemanticAnalysis] = []

    def infer(self, transcript: str) -> SemanticAnalysis:
        latest = infer_semantic_biomarkers(transcript)
        merged = merge_semantic_analyses(self._history[-1] if self._history else None, latest)
        self._history.append(merged)
        return merged

    async def analyze(self, request: SemanticRequest, token=None) -> SemanticAnalysis:
        if token is not None and token.cancelled:
            raise asyncio.CancelledError()
        result = self.infer(request.transcript)
        logger.debug(
            f"Keyword analysis for {request.session_id}: stress={result.stress_score:.0f}, "
            f"fatigue={result.fatigue_score:.0f}, confidence={result.confidence:.2f}"
        )
        return result
