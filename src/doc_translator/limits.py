"""
Limites des modèles locaux et taille de chunk recommandée.

Les valeurs proviennent d'essais avec des modèles hors ligne (Ollama) :
au-delà de `recommended_input_tokens`, les réponses ont tendance à être
tronquées ou à dépasser le délai.
"""

from dataclasses import dataclass, field
from typing import Optional

from .config import ChunkingDefaults
from .models import PipelineConfig, normalize_provider


@dataclass(frozen=True)
class ModelLimits:
    context_window: int
    recommended_input_tokens: int
    max_output_tokens: int
    timeout: float
    description: str = ""
    max_html_chunk_size: Optional[int] = None


MODEL_LIMITS: dict[str, ModelLimits] = {
    # Validation
    "qwen2.5:7b": ModelLimits(4096, 2000, 200, 60.0, "Validation sémantique"),
    "qwen2.5:14b": ModelLimits(8192, 3000, 300, 90.0, "Validation, plus précis"),
    # Rewrite
    "llama3.2:3b": ModelLimits(4096, 1200, 2000, 120.0, "Rewrite rapide, petits chunks", 1500),
    "llama3.1:8b": ModelLimits(8192, 2400, 4096, 120.0, "Rewrite équilibré (recommandé)", 2400),
    "llama3.1:70b": ModelLimits(8192, 2000, 4096, 180.0, "Rewrite haute qualité, lent"),
    # Technical check
    "mistral:7b": ModelLimits(8192, 2400, 4096, 120.0, "Revue technique"),
    "mistral-nemo:12b": ModelLimits(8192, 3000, 4096, 150.0, "Revue technique avancée"),
}

MODELS_BY_ROLE: dict[str, tuple[str, ...]] = {
    "validation": ("qwen2.5:7b", "qwen2.5:14b"),
    "rewrite": ("llama3.2:3b", "llama3.1:8b", "llama3.1:70b"),
    "technical-check": ("mistral:7b", "mistral-nemo:12b"),
}

MIN_CHUNK_SIZE = 500


@dataclass
class ChunkSizeWarning:
    type: str
    message: str
    severity: str

    def to_dict(self) -> dict:
        return {"type": self.type, "message": self.message, "severity": self.severity}


@dataclass
class ChunkSizeCheck:
    recommended: int
    warnings: list[ChunkSizeWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(w.severity == "error" for w in self.warnings)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "recommended": self.recommended,
            "warnings": [w.to_dict() for w in self.warnings],
        }


def get_model_limits(model: str) -> Optional[ModelLimits]:
    return MODEL_LIMITS.get(model)


def pipeline_input_limit(pipeline: Optional[PipelineConfig]) -> Optional[int]:
    """Plus petite taille d'entrée recommandée parmi les modèles actifs du pipeline."""
    if pipeline is None or not pipeline.enabled:
        return None
    limits = [
        MODEL_LIMITS[model].recommended_input_tokens
        for model in pipeline.enabled_models()
        if model in MODEL_LIMITS
    ]
    return min(limits) if limits else None


def recommended_chunk_size(provider: str, pipeline: Optional[PipelineConfig] = None) -> int:
    """
    Taille de chunk recommandée (tokens) pour un fournisseur et un pipeline.

    Example:
        >>> recommended_chunk_size("deepl")
        3000
        >>> recommended_chunk_size("deepl", PipelineConfig(enabled=True, default_model="llama3.2:3b"))
        1200
    """
    llm_enabled = bool(pipeline and pipeline.enabled)
    size = ChunkingDefaults().recommended_size(normalize_provider(provider), llm_enabled)
    limit = pipeline_input_limit(pipeline)
    return min(size, limit) if limit is not None else size


def validate_chunk_size(
    size: int,
    pipeline: Optional[PipelineConfig] = None,
    provider: Optional[str] = None,
) -> ChunkSizeCheck:
    """Avertissements sur une taille de chunk choisie par l'utilisateur."""
    if provider:
        recommended = recommended_chunk_size(provider, pipeline)
    else:
        recommended = pipeline_input_limit(pipeline) or ChunkingDefaults().default_max_tokens

    check = ChunkSizeCheck(recommended=recommended)
    if size > recommended * 1.5:
        check.warnings.append(
            ChunkSizeWarning(
                "too-large",
                f"Taille de chunk ({size}) supérieure de plus de 50% à la taille recommandée ({recommended})",
                "warning",
            )
        )
    if size > recommended * 2:
        check.warnings.append(
            ChunkSizeWarning(
                "critical",
                f"Taille de chunk ({size}) supérieure au double de la taille recommandée ({recommended})",
                "error",
            )
        )
    if size < MIN_CHUNK_SIZE:
        check.warnings.append(
            ChunkSizeWarning(
                "too-small",
                f"Taille de chunk ({size}) très petite : contexte insuffisant pour une bonne traduction",
                "info",
            )
        )
    return check
