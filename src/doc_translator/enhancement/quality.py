"""
Score de qualité heuristique (0-100) d'une paire source/traduction.

Utilisé par le smart gating du pipeline d'amélioration :
    score ≥ 85      → aucune étape
    70 ≤ score < 85 → validation seule
    score < 70      → pipeline complet
"""

import re

from ..glossary import has_leftover_placeholders
from ..models import PIPELINE_STAGES, STAGE_VALIDATION

SKIP_THRESHOLD = 85
VALIDATION_ONLY_THRESHOLD = 70

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_RE.split(text) if len(s.strip()) > 20]


def quality_score(source: str, translation: str) -> int:
    if not translation or not translation.strip():
        return 0
    if not source or not source.strip():
        return 100

    score = 100.0

    ratio = len(translation) / len(source)
    if ratio < 0.5 or ratio > 2.0:
        score -= 25
    elif ratio < 0.7 or ratio > 1.5:
        score -= 10

    # Phrases recopiées telles quelles depuis la source
    source_sentences = set(_sentences(source))
    translated_sentences = _sentences(translation)
    if translated_sentences:
        untranslated = sum(1 for s in translated_sentences if s in source_sentences)
        score -= 40 * untranslated / len(translated_sentences)

    lines = [line.strip() for line in translation.splitlines() if line.strip()]
    if len(lines) > 1:
        repeated = len(lines) - len(set(lines))
        score -= 20 * repeated / len(lines)

    if has_leftover_placeholders(translation):
        score -= 20

    return max(0, min(100, round(score)))


def stages_for_score(score: int) -> tuple[str, ...]:
    """Étapes autorisées par le smart gating pour un score donné."""
    if score >= SKIP_THRESHOLD:
        return ()
    if score >= VALIDATION_ONLY_THRESHOLD:
        return (STAGE_VALIDATION,)
    return PIPELINE_STAGES
