"""
Traitement d'un chunk : réclamation → traduction → amélioration → persistance.

Chaque transition est écrite dans le store (qui recalcule l'agrégat du job)
puis diffusée aux abonnés du job. Un échec reste confiné au chunk : il est
enregistré avec sa catégorie et, si l'erreur est relançable, une nouvelle
tentative est programmée.
"""

from dataclasses import replace
from typing import Callable, Optional, TYPE_CHECKING

from .enhancement import EnhancementPipeline, EnhancementRequest
from .errors import TranslatorError
from .htmltext import html_to_text
from .logger import get_logger
from .models import Chunk, Job, JobProgress, PipelineStageResult, ProviderConfig
from .providers import TranslationProvider, get_provider
from .retry import describe_error, next_retry_time
from .store import utcnow

if TYPE_CHECKING:
    from .events import ProgressPublisher
    from .store import JobStore

logger = get_logger(__name__)


class ChunkProcessor:
    """
    Exécute le cycle de vie complet d'un chunk.

    Attributes:
        store: Store des jobs/chunks (seul état partagé)
        publisher: Diffuseur de progression (optionnel)
        provider_resolver: nom de fournisseur -> adaptateur
    """

    def __init__(
        self,
        store: "JobStore",
        publisher: Optional["ProgressPublisher"] = None,
        provider_resolver: Callable[[str], TranslationProvider] = get_provider,
    ):
        self.store = store
        self.publisher = publisher
        self.provider_resolver = provider_resolver

    def publish(self, job_id: str) -> None:
        """Diffuse l'instantané courant du job (si quelqu'un écoute)."""
        if self.publisher is None or not self.publisher.subscriber_count(job_id):
            return
        job = self.store.find_job(job_id)
        if job is None:
            return
        progress = JobProgress(job, self.store.get_chunks(job_id))
        self.publisher.publish(job_id, progress.to_dict())

    def process(
        self,
        chunk_id: int,
        job: Job,
        config: ProviderConfig,
        pipeline: Optional[EnhancementPipeline] = None,
    ) -> Optional[Chunk]:
        """
        Traite un chunk s'il peut être réclamé.

        Returns:
            Le chunk dans son état final, ou None si un autre worker le traite
            déjà (ou si le job est en cours d'annulation)
        """
        chunk = self.store.claim_chunk(chunk_id)
        if chunk is None:
            logger.debug(f"Chunk {chunk_id} déjà pris ou job annulé, ignoré")
            return None

        context = f"job_{job.id[:8]}_chunk_{chunk.chunk_index:03d}"
        logger.info(f"🔄 {context} : traduction ({chunk.token_count} tokens, {config.provider_name})")
        self.publish(job.id)

        call_config = replace(config, options={**config.options, "log_context": context})
        try:
            provider = self.provider_resolver(config.provider)
            translated_html: Optional[str] = None
            if chunk.source_html and config.html_mode:
                translated_html = provider.translate(
                    chunk.source_html, job.source_language, job.target_language, call_config
                )
                translated = html_to_text(translated_html)
            else:
                translated = provider.translate(
                    chunk.source_text, job.source_language, job.target_language, call_config
                )
        except Exception as e:
            return self._fail(chunk, job, e, context)

        if pipeline is None:
            self.store.complete_chunk(chunk.id, translated, translated_html)
            logger.info(f"✅ {context} : terminé")
            self.publish(job.id)
            return self.store.get_chunk(chunk.id)

        return self._enhance(chunk, job, config, pipeline, translated, translated_html, context)

    def _enhance(
        self,
        chunk: Chunk,
        job: Job,
        config: ProviderConfig,
        pipeline: EnhancementPipeline,
        translated: str,
        translated_html: Optional[str],
        context: str,
    ) -> Chunk:
        self.store.start_enhancing(chunk.id, translated, translated_html)
        self.publish(job.id)

        def on_stage(result: PipelineStageResult, text: str, model: str) -> None:
            changed = text if text != translated else None
            self.store.record_stage(chunk.id, result, translated_text=changed, llm_model=model)
            self.publish(job.id)

        request = EnhancementRequest(
            source_text=chunk.source_text,
            translated_text=translated,
            source_language=job.source_language,
            target_language=job.target_language,
            glossary=config.glossary,
            html_mode=False,
            context=context,
        )
        try:
            outcome = pipeline.run(request, on_stage=on_stage)
        except Exception as e:
            return self._fail(chunk, job, e, context)

        # Le HTML traduit n'est conservé que si aucune étape n'a modifié le texte
        final_html = translated_html if outcome.text == translated else None
        self.store.complete_chunk(
            chunk.id,
            outcome.text,
            final_html,
            llm_model=outcome.model,
            llm_duration=outcome.duration if outcome.stages else None,
        )
        logger.info(f"✅ {context} : terminé après {len(outcome.stages)} étape(s) LLM")
        self.publish(job.id)
        return self.store.get_chunk(chunk.id)

    def _fail(self, chunk: Chunk, job: Job, error: Exception, context: str) -> Chunk:
        """Enregistre l'échec et programme éventuellement une nouvelle tentative."""
        current_job = self.store.find_job(job.id)
        cancelled = current_job is None or current_job.cancel_requested

        next_retry_at = None
        if not cancelled:
            next_retry_at = next_retry_time(error, chunk.retry_count, now=utcnow())

        message = describe_error(error)
        self.store.fail_chunk(chunk.id, message, next_retry_at)

        if next_retry_at is not None:
            logger.warning(f"⚠️ {context} : échec ({message}), retry prévu à {next_retry_at.isoformat()}")
        else:
            logger.error(f"❌ {context} : échec définitif ({message})")
        if not isinstance(error, TranslatorError):
            logger.debug(f"{context} : exception d'origine", exc_info=error)

        self.publish(job.id)
        return self.store.get_chunk(chunk.id)
