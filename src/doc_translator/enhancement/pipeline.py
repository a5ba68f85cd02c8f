"""
Pipeline d'amélioration LLM : validation → rewrite → technical-check.

Chaque étape est activable séparément et peut utiliser son propre modèle
(ou hériter du modèle par défaut du pipeline). Les réglages de génération
(num_ctx, num_batch, num_thread, num_gpu...) sont transmis au client LLM
sans interprétation.

Une étape en échec lève PipelineStageError : le chunk passe en failed, la
traduction d'avant l'amélioration n'est pas conservée en repli.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from .. import glossary
from ..config import TemplateNames
from ..errors import PipelineStageError
from ..llm import LLM
from ..logger import get_logger
from ..models import (
    LAYER_TRANSLATION,
    PIPELINE_STAGES,
    STAGE_REWRITE,
    STAGE_TECHNICAL_CHECK,
    STAGE_VALIDATION,
    GlossaryTerm,
    PipelineConfig,
    PipelineStageResult,
)
from .quality import quality_score, stages_for_score
from .validation_parser import (
    ValidationResult,
    build_rewrite_instructions,
    parse_validation_response,
)

logger = get_logger(__name__)

# Callback appelé après chaque étape exécutée : (résultat, texte courant, modèle)
StageCallback = Callable[[PipelineStageResult, str, str], None]


@dataclass
class EnhancementRequest:
    """Entrées d'un passage du pipeline pour un chunk."""

    source_text: str
    translated_text: str
    source_language: str
    target_language: str
    glossary: Sequence[GlossaryTerm] = ()
    html_mode: bool = False
    context: str = ""


@dataclass
class EnhancementOutcome:
    """
    Résultat d'un passage du pipeline.

    Attributes:
        text: Traduction finale
        stages: Étapes exécutées, dans l'ordre
        processing_layer: Dernière étape ayant touché le chunk
        model: Dernier modèle utilisé (None si aucune étape)
        duration: Durée totale des étapes (secondes)
        quality_score: Score calculé pour le smart gating (None si désactivé)
    """

    text: str
    stages: list[PipelineStageResult] = field(default_factory=list)
    processing_layer: str = LAYER_TRANSLATION
    model: Optional[str] = None
    duration: float = 0.0
    quality_score: Optional[int] = None


def _default_llm_factory(config: PipelineConfig) -> LLM:
    return LLM(
        model_name=config.default_model,
        url=config.base_url,
        temperature=config.generation.temperature,
        provider="ollama",
    )


class EnhancementPipeline:
    """
    Orchestrateur des étapes d'amélioration pour un job.

    Example:
        >>> pipeline = EnhancementPipeline(config)
        >>> outcome = pipeline.run(EnhancementRequest(source, translated, "en", "fr"))
        >>> outcome.text, [s.stage for s in outcome.stages]
    """

    def __init__(
        self,
        config: PipelineConfig,
        llm: Optional[LLM] = None,
        llm_factory: Callable[[PipelineConfig], LLM] = _default_llm_factory,
    ):
        self.config = config
        self.llm = llm or llm_factory(config)
        self.templates = TemplateNames()

    def planned_stages(self, score: Optional[int]) -> list[str]:
        """Étapes activées, restreintes par le smart gating si un score est fourni."""
        allowed = stages_for_score(score) if score is not None else PIPELINE_STAGES
        return [
            stage
            for stage in PIPELINE_STAGES
            if self.config.stage(stage).enabled and stage in allowed
        ]

    def run(
        self,
        request: EnhancementRequest,
        on_stage: Optional[StageCallback] = None,
    ) -> EnhancementOutcome:
        """
        Exécute les étapes planifiées sur une traduction.

        Raises:
            PipelineStageError: Si une étape échoue (après notification on_stage)
        """
        outcome = EnhancementOutcome(text=request.translated_text)

        score = None
        if self.config.smart_gating:
            score = quality_score(request.source_text, request.translated_text)
            outcome.quality_score = score
        stages = self.planned_stages(score)
        if score is not None:
            logger.debug(f"🎯 {request.context} : score qualité {score}, étapes {stages}")

        validation: Optional[ValidationResult] = None
        for stage in stages:
            if stage == STAGE_REWRITE and validation is not None and validation.is_ok:
                logger.debug(f"⏭️ {request.context} : validation OK, rewrite ignoré")
                continue

            model = self.config.model_for(stage)
            started = time.monotonic()
            try:
                if stage == STAGE_VALIDATION:
                    validation = self._validate(request, outcome.text, model)
                    status = "ok" if validation.is_ok else "issues"
                elif stage == STAGE_REWRITE:
                    outcome.text = self._rewrite(request, outcome.text, model, validation)
                    status = "rewritten"
                else:
                    outcome.text = self._technical_check(request, outcome.text, model)
                    status = "checked"
            except Exception as e:
                result = PipelineStageResult(stage, "failed", time.monotonic() - started)
                outcome.stages.append(result)
                if on_stage:
                    on_stage(result, outcome.text, model)
                logger.warning(f"⚠️ {request.context} : étape {stage} en échec : {e}")
                raise PipelineStageError(stage, e) from e

            result = PipelineStageResult(stage, status, time.monotonic() - started)
            outcome.stages.append(result)
            outcome.processing_layer = stage
            outcome.model = model
            outcome.duration += result.duration
            if on_stage:
                on_stage(result, outcome.text, model)
            logger.info(
                f"🤖 {request.context} : {stage} → {status} ({result.duration:.1f}s, {model})"
            )

        return outcome

    # ============================================================
    # 🔹 Étapes
    # ============================================================

    def _prompt_vars(self, request: EnhancementRequest) -> dict:
        return {
            "source_language": request.source_language,
            "target_language": request.target_language,
            "formality": self.config.formality,
            "html_mode": request.html_mode,
            "glossary": glossary.format_for_prompt(request.glossary),
        }

    def _query(self, stage: str, request: EnhancementRequest, prompt: str, content: str, model: str) -> str:
        context = f"{request.context}_{stage}" if request.context else stage
        return self.llm.query(
            prompt,
            content,
            context=context,
            model=model,
            options=self.config.generation_for(stage).to_options(),
        )

    def _validate(self, request: EnhancementRequest, text: str, model: str) -> ValidationResult:
        prompt = self.llm.render_prompt(self.templates.Validation_Template, **self._prompt_vars(request))
        content = f"ORIGINAL:\n{request.source_text}\n\nTRANSLATION:\n{text}"
        response = self._query(STAGE_VALIDATION, request, prompt, content, model)
        return parse_validation_response(response)

    def _rewrite(
        self,
        request: EnhancementRequest,
        text: str,
        model: str,
        validation: Optional[ValidationResult],
    ) -> str:
        # Sans validation préalable : relecture générale
        instructions = (
            build_rewrite_instructions(validation)
            if validation is not None
            else "- Improve grammar, agreement and fluency."
        )
        prompt = self.llm.render_prompt(
            self.templates.Rewrite_Template,
            instructions=instructions,
            **self._prompt_vars(request),
        )
        rewritten = self._query(STAGE_REWRITE, request, prompt, text, model)
        return glossary.enforce(request.source_text, rewritten, request.glossary)

    def _technical_check(self, request: EnhancementRequest, text: str, model: str) -> str:
        prompt = self.llm.render_prompt(
            self.templates.Technical_Check_Template, **self._prompt_vars(request)
        )
        content = f"ORIGINAL:\n{request.source_text}\n\nTRANSLATION:\n{text}"
        checked = self._query(STAGE_TECHNICAL_CHECK, request, prompt, content, model)
        return glossary.enforce(request.source_text, checked, request.glossary)
