"""
Modèle de données : Job, Chunk, configuration fournisseur et pipeline LLM.

Un Job représente une demande de traduction d'un document ; il possède de
façon exclusive une collection ordonnée de Chunks (index contigus à partir
de 0). Les statuts sont des énumérations fermées : la présentation (couleurs,
icônes) relève de l'interface, pas du cœur.
"""

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from dotenv import load_dotenv


class JobStatus(str, Enum):
    PENDING = "pending"
    TRANSLATING = "translating"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"


class ChunkStatus(str, Enum):
    PENDING = "pending"
    TRANSLATING = "translating"
    LLM_ENHANCING = "llm-enhancing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """True si le chunk peut encore progresser sans action manuelle."""
        return self in (
            ChunkStatus.PENDING,
            ChunkStatus.TRANSLATING,
            ChunkStatus.LLM_ENHANCING,
        )


# Étapes du pipeline d'amélioration, dans l'ordre d'exécution
STAGE_VALIDATION = "validation"
STAGE_REWRITE = "rewrite"
STAGE_TECHNICAL_CHECK = "technical-check"
PIPELINE_STAGES = (STAGE_VALIDATION, STAGE_REWRITE, STAGE_TECHNICAL_CHECK)

# Couche de traitement initiale (avant toute étape LLM)
LAYER_TRANSLATION = "translation"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class PipelineStageResult:
    """
    Trace d'exécution d'une étape du pipeline (ajout seulement, jamais modifiée).

    Attributes:
        stage: Nom de l'étape (validation, rewrite, technical-check)
        status: Résultat ("ok", "issues", "rewritten", "checked", "skipped", "failed")
        duration: Durée en secondes
    """

    stage: str
    status: str
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "status": self.status, "duration": self.duration}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineStageResult":
        return cls(
            stage=data["stage"],
            status=data["status"],
            duration=float(data.get("duration", 0.0)),
        )


@dataclass
class Chunk:
    """
    Unité de traduction bornée en tokens, adressable par sa position.

    `job_id` est une référence arrière : le Chunk appartient à son Job et
    disparaît avec lui.
    """

    id: int
    job_id: str
    chunk_index: int
    source_text: str
    status: ChunkStatus = ChunkStatus.PENDING
    source_html: Optional[str] = None
    translated_text: Optional[str] = None
    translated_html: Optional[str] = None
    token_count: int = 0
    char_count: int = 0
    error: Optional[str] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_layer: Optional[str] = None
    llm_model: Optional[str] = None
    llm_duration: Optional[float] = None
    llm_stages: list[PipelineStageResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "chunk_index": self.chunk_index,
            "source_text": self.source_text,
            "source_html": self.source_html,
            "translated_text": self.translated_text,
            "translated_html": self.translated_html,
            "token_count": self.token_count,
            "char_count": self.char_count,
            "status": self.status.value,
            "error": self.error,
            "retry_count": self.retry_count,
            "next_retry_at": _iso(self.next_retry_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "processing_layer": self.processing_layer,
            "llm_model": self.llm_model,
            "llm_duration": self.llm_duration,
            "llm_stages": [stage.to_dict() for stage in self.llm_stages],
        }

    def __repr__(self) -> str:
        return (
            f"Chunk(id={self.id}, job={self.job_id[:8]}, index={self.chunk_index}, "
            f"status={self.status.value}, retries={self.retry_count})"
        )


@dataclass
class Job:
    """Une demande de traduction de bout en bout pour un document."""

    id: str
    filename: str
    source_language: str
    target_language: str
    api_provider: str
    output_format: str
    status: JobStatus = JobStatus.PENDING
    total_chunks: int = 0
    completed_chunks: int = 0
    failed_chunks: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    error_message: Optional[str] = None
    cancel_requested: bool = False
    max_tokens: Optional[int] = None
    overlap_tokens: Optional[int] = None
    pending_text: Optional[str] = None

    @property
    def is_chunked(self) -> bool:
        """False tant que le texte brut attend son découpage (upload différé)."""
        return self.pending_text is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "api_provider": self.api_provider,
            "output_format": self.output_format,
            "status": self.status.value,
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "failed_chunks": self.failed_chunks,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "error_message": self.error_message,
            "cancel_requested": self.cancel_requested,
            "max_tokens": self.max_tokens,
            "overlap_tokens": self.overlap_tokens,
            "chunked": self.is_chunked,
        }


# ============================================================
# 🔹 Configuration du pipeline d'amélioration LLM
# ============================================================


@dataclass(frozen=True)
class GenerationOptions:
    """
    Réglages de génération transmis tels quels au modèle local.

    Le pipeline n'interprète pas ces valeurs (contexte, batch, threads,
    couches GPU) : il les transmet au client LLM.
    """

    temperature: float = 0.3
    top_p: float = 0.9
    num_ctx: Optional[int] = None
    num_batch: Optional[int] = None
    num_thread: Optional[int] = None
    num_gpu: Optional[int] = None

    def to_options(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "GenerationOptions":
        if not data:
            return cls()
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass(frozen=True)
class StageConfig:
    """Activation et modèle d'une étape (None = modèle par défaut du pipeline)."""

    enabled: bool = False
    model: Optional[str] = None
    generation: Optional[GenerationOptions] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "StageConfig":
        if not data:
            return cls()
        # "custom_model" : identifiant libre saisi par l'utilisateur
        model = data.get("custom_model") or data.get("model")
        generation = data.get("generation")
        return cls(
            enabled=bool(data.get("enabled", False)),
            model=model or None,
            generation=GenerationOptions.from_dict(generation) if generation else None,
        )


@dataclass(frozen=True)
class PipelineConfig:
    """
    Configuration du pipeline d'amélioration (validation → rewrite → technical-check).

    Attributes:
        enabled: Active le pipeline pour le job
        default_model: Modèle hérité par les étapes sans modèle propre
        base_url: Endpoint compatible OpenAI du runtime LLM local (Ollama)
        smart_gating: Active la décision par score de qualité
        formality: Registre visé ("informal", "neutral", "formal")
    """

    enabled: bool = False
    default_model: str = "llama3.1:8b"
    base_url: str = "http://localhost:11434/v1"
    validation: StageConfig = field(default_factory=lambda: StageConfig(enabled=True))
    rewrite: StageConfig = field(default_factory=lambda: StageConfig(enabled=True))
    technical_check: StageConfig = field(default_factory=StageConfig)
    smart_gating: bool = False
    formality: str = "neutral"
    generation: GenerationOptions = field(default_factory=GenerationOptions)

    def stage(self, name: str) -> StageConfig:
        return {
            STAGE_VALIDATION: self.validation,
            STAGE_REWRITE: self.rewrite,
            STAGE_TECHNICAL_CHECK: self.technical_check,
        }[name]

    def model_for(self, name: str) -> str:
        return self.stage(name).model or self.default_model

    def generation_for(self, name: str) -> GenerationOptions:
        return self.stage(name).generation or self.generation

    def enabled_models(self) -> list[str]:
        return [self.model_for(name) for name in PIPELINE_STAGES if self.stage(name).enabled]

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "PipelineConfig":
        if not data:
            return cls()
        defaults = cls()
        return cls(
            enabled=bool(data.get("enabled", False)),
            default_model=data.get("default_model") or defaults.default_model,
            base_url=data.get("base_url") or defaults.base_url,
            validation=StageConfig.from_dict(data["validation"])
            if "validation" in data
            else defaults.validation,
            rewrite=StageConfig.from_dict(data["rewrite"])
            if "rewrite" in data
            else defaults.rewrite,
            technical_check=StageConfig.from_dict(
                data.get("technical_check") or data.get("technical")
            ),
            smart_gating=bool(data.get("smart_gating", False)),
            formality=data.get("formality", defaults.formality),
            generation=GenerationOptions.from_dict(data.get("generation")),
        )


# ============================================================
# 🔹 Configuration fournisseur (instantané par job)
# ============================================================


@dataclass(frozen=True)
class GlossaryTerm:
    source_term: str
    target_term: str


@dataclass(frozen=True)
class ProviderConfig:
    """
    Instantané immuable de la configuration fournisseur d'un job.

    Jamais persisté en tant qu'entité : il accompagne les appels translate /
    retry et reste en mémoire pour les reprises automatiques.
    """

    provider: str
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    formality: Optional[str] = None
    tag_handling: Optional[str] = None
    html_mode: bool = False
    timeout: float = 60.0
    glossary: tuple[GlossaryTerm, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)
    enhancement: PipelineConfig = field(default_factory=PipelineConfig)

    @property
    def provider_name(self) -> str:
        return normalize_provider(self.provider)

    def redacted(self) -> dict[str, Any]:
        """Représentation loggable (clé API masquée)."""
        return {
            "provider": self.provider_name,
            "api_key": "***" if self.api_key else None,
            "model": self.model,
            "base_url": self.base_url,
            "html_mode": self.html_mode,
            "glossary_terms": len(self.glossary),
            "enhancement": self.enhancement.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderConfig":
        """Construit la configuration depuis une charge utile JSON (API web)."""
        provider = data.get("provider") or data.get("api_provider")
        if not provider:
            from .errors import InputError

            raise InputError("Le fournisseur de traduction est requis", code="missing_provider")
        options = dict(data.get("options") or data.get("api_options") or {})
        glossary = tuple(
            GlossaryTerm(term["source_term"], term["target_term"])
            for term in data.get("glossary") or []
        )
        return cls(
            provider=provider,
            api_key=data.get("api_key") or None,
            model=data.get("model") or options.pop("model", None),
            base_url=data.get("base_url") or options.pop("base_url", None),
            formality=data.get("formality") or options.pop("formality", None),
            tag_handling=data.get("tag_handling") or options.pop("tag_handling", None),
            html_mode=bool(data.get("html_mode", False)),
            timeout=float(data.get("timeout", 60.0)),
            glossary=glossary,
            options=options,
            enhancement=PipelineConfig.from_dict(data.get("enhancement") or data.get("llm_pipeline")),
        )

    @classmethod
    def from_env(cls, provider: str) -> "ProviderConfig":
        """
        Reconstruit une configuration depuis l'environnement (.env).

        Utilisé par le balayage automatique quand aucune configuration n'a été
        fournie pendant la vie du processus (reprise après redémarrage).
        """
        load_dotenv()
        name = normalize_provider(provider)
        if name == "deepl":
            return cls(provider=name, api_key=os.getenv("DEEPL_API_KEY"))
        if name == "openai":
            return cls(
                provider=name,
                api_key=os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("OPENAI_BASE_URL"),
                model=os.getenv("OPENAI_MODEL"),
            )
        if name == "local":
            return cls(provider=name, base_url=os.getenv("LIBRETRANSLATE_URL"))
        return cls(provider=name)


# Alias acceptés pour les noms de fournisseurs
_PROVIDER_ALIASES = {
    "google-translate": "google",
    "chatgpt": "openai",
    "openai-compatible": "openai",
    "libretranslate": "local",
}


def normalize_provider(provider: str) -> str:
    name = provider.strip().lower()
    return _PROVIDER_ALIASES.get(name, name)


@dataclass
class JobProgress:
    """Instantané complet de progression d'un job (jamais un delta)."""

    job: Job
    chunks: list[Chunk]

    @property
    def total(self) -> int:
        return len(self.chunks)

    def count(self, status: ChunkStatus) -> int:
        return sum(1 for chunk in self.chunks if chunk.status == status)

    @property
    def percentage(self) -> int:
        if not self.chunks:
            return 0
        return round(self.count(ChunkStatus.COMPLETED) * 100 / self.total)

    def to_dict(self, include_text: bool = False) -> dict[str, Any]:
        chunks = []
        for chunk in self.chunks:
            data = chunk.to_dict()
            if not include_text:
                for key in ("source_text", "source_html", "translated_text", "translated_html"):
                    data.pop(key)
            chunks.append(data)
        return {
            "job": self.job.to_dict(),
            "progress": {
                "total": self.total,
                "completed": self.count(ChunkStatus.COMPLETED),
                "failed": self.count(ChunkStatus.FAILED),
                "pending": self.count(ChunkStatus.PENDING),
                "translating": self.count(ChunkStatus.TRANSLATING),
                "llm_enhancing": self.count(ChunkStatus.LLM_ENHANCING),
                "percentage": self.percentage,
                "chunks": chunks,
            },
        }
