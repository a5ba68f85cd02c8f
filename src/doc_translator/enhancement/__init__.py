"""
Pipeline d'amélioration LLM des traductions (validation, rewrite,
technical-check) et outils associés.
"""

from .pipeline import EnhancementOutcome, EnhancementPipeline, EnhancementRequest
from .quality import quality_score, stages_for_score
from .validation_parser import (
    ValidationIssue,
    ValidationResult,
    build_rewrite_instructions,
    is_positive_response,
    parse_validation_response,
)

__all__ = [
    "EnhancementOutcome",
    "EnhancementPipeline",
    "EnhancementRequest",
    "ValidationIssue",
    "ValidationResult",
    "build_rewrite_instructions",
    "is_positive_response",
    "parse_validation_response",
    "quality_score",
    "stages_for_score",
]
