"""
Façade de doc-translator : opérations exposées aux interfaces (API web, CLI).

    upload        → crée un job (et le découpe, sauf découpage différé)
    translate     → découpe si besoin puis lance le dispatch des chunks
    status        → instantané de progression
    retry_failed  → relance les chunks en échec
    retry_all     → relance tout le job, éventuellement sous un autre fournisseur
    update_chunk  → édition manuelle d'une traduction
    cancel_job    → arrête le dispatch, les chunks en vol se terminent
    generate      → finalise le job et réassemble le texte traduit
"""

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from .config import ChunkingDefaults
from .engine import ChunkProcessor
from .enhancement import EnhancementPipeline
from .errors import InputError, InvalidTransitionError, NotFoundError
from .events import EVENT_JOB_PROGRESS, ProgressPublisher, Subscription
from .htmltext import html_to_blocks, html_to_text
from .lifecycle import EDITABLE
from .limits import recommended_chunk_size, validate_chunk_size
from .logger import get_logger
from .models import (
    Chunk,
    ChunkStatus,
    Job,
    JobProgress,
    PipelineConfig,
    ProviderConfig,
    normalize_provider,
)
from .providers import TranslationProvider, get_provider
from .retry import RetryScheduler
from .segment import Chunker, TextChunk
from .store import JobStore
from .tokens import TokenCounter, estimate_chunk_count
from .worker import TranslationWorker

logger = get_logger(__name__)

CANCELLED_ERROR = "cancelled: Job annulé par l'utilisateur"


@dataclass
class GeneratedDocument:
    """Texte réassemblé d'un job finalisé (téléchargement partiel possible)."""

    job: Job
    text: str
    missing_chunks: list[int] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.missing_chunks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "text": self.text,
            "missing_chunks": self.missing_chunks,
            "partial": self.is_partial,
        }


class TranslationService:
    """
    Point d'entrée unique du cœur : store, worker, scheduler et événements.

    Les configurations fournisseur restent en mémoire par job : elles ne sont
    jamais persistées. Après un redémarrage, la reprise automatique les
    reconstruit depuis l'environnement (ProviderConfig.from_env).

    Example:
        >>> service = TranslationService(JobStore(":memory:"))
        >>> job = service.upload("doc.txt", text=text, target_language="fr", api_provider="google")
        >>> service.translate(job.id, ProviderConfig(provider="google"))
        >>> service.status(job.id).percentage
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        publisher: Optional[ProgressPublisher] = None,
        counter: Optional[TokenCounter] = None,
        provider_resolver: Callable[[str], TranslationProvider] = get_provider,
        pipeline_factory: Callable[[PipelineConfig], EnhancementPipeline] = EnhancementPipeline,
        max_workers: Optional[int] = None,
    ):
        self.store = store or JobStore()
        self.publisher = publisher or ProgressPublisher()
        self.counter = counter or TokenCounter()
        self.provider_resolver = provider_resolver
        self.pipeline_factory = pipeline_factory

        self.processor = ChunkProcessor(self.store, self.publisher, provider_resolver)
        self.worker = TranslationWorker(self.processor, max_workers=max_workers)
        self.scheduler = RetryScheduler(self.store, dispatch=self.resume)

        self._lock = threading.Lock()
        self._configs: dict[str, ProviderConfig] = {}
        self._pipelines: dict[str, tuple[PipelineConfig, EnhancementPipeline]] = {}

    # ============================================================
    # 🔹 Cycle de vie du service
    # ============================================================

    def start(self) -> None:
        """
        Démarre le balayage des retries et de la reprise automatique.

        Aucun worker ne survit à un arrêt du process : les chunks restés en
        cours de traitement sont d'abord passés en échec "interrupted".
        """
        interrupted = self.scheduler.recover_interrupted()
        if interrupted:
            logger.warning(f"⚠️ {len(interrupted)} chunk(s) interrompu(s) par l'arrêt précédent")
            for job_id in sorted({chunk.job_id for chunk in interrupted}):
                self.processor.publish(job_id)
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.scheduler.stop(timeout=timeout)
        self.worker.shutdown(wait=False)
        self.counter.close()

    # ============================================================
    # 🔹 Création et découpage
    # ============================================================

    def upload(
        self,
        filename: str,
        text: Optional[str] = None,
        html: Optional[str] = None,
        source_language: str = "auto",
        target_language: str = "",
        api_provider: str = "",
        output_format: str = "txt",
        max_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
        chunk_now: bool = True,
        api_key: Optional[str] = None,
        enhancement: Optional[PipelineConfig] = None,
    ) -> Job:
        """
        Crée un job de traduction à partir du texte (ou du HTML) extrait.

        Les documents HTML sont réduits à leurs blocs de texte et toujours
        découpés immédiatement, sans chevauchement : un bloc n'est jamais
        coupé.

        La taille de chunk par défaut dépend du fournisseur et de
        l'activation du pipeline LLM (`enhancement`).

        Raises:
            InputError: Texte manquant, paramètres invalides, fournisseur
                inconnu ou clé API manquante (aucun job n'est créé)
        """
        if not filename:
            raise InputError("Nom de fichier requis", code="missing_file")
        if not target_language:
            raise InputError("Langue cible requise", code="missing_target_language")
        if not api_provider:
            raise InputError("Le fournisseur de traduction est requis", code="missing_provider")

        provider_name = normalize_provider(api_provider)
        provider = self.provider_resolver(provider_name)
        config = ProviderConfig.from_env(provider_name)
        if api_key:
            config = replace(config, api_key=api_key)
        if enhancement is not None:
            config = replace(config, enhancement=enhancement)
        provider.validate_config(config)

        blocks: list[str] = []
        if html is not None:
            blocks = html_to_blocks(html)
            if not blocks:
                raise InputError("Le document HTML ne contient aucun texte", code="missing_text")
            text = "\n\n".join(blocks)
            overlap_tokens = 0
        if not text or not text.strip():
            raise InputError("Le document ne contient aucun texte", code="missing_text")

        max_tokens, overlap_tokens = self._chunk_options(provider_name, config, max_tokens, overlap_tokens)

        if chunk_now or blocks:
            if blocks:
                chunks = self._split_blocks(blocks, max_tokens)
            else:
                chunks = self._split(text, max_tokens, overlap_tokens)
            job = self.store.create_job(
                filename,
                source_language,
                target_language,
                provider_name,
                output_format,
                max_tokens=max_tokens,
                overlap_tokens=overlap_tokens,
            )
            self._add_chunks(job.id, chunks, html_mode=bool(blocks))
        else:
            job = self.store.create_job(
                filename,
                source_language,
                target_language,
                provider_name,
                output_format,
                max_tokens=max_tokens,
                overlap_tokens=overlap_tokens,
                pending_text=text,
                total_chunks=estimate_chunk_count(len(text), max_tokens),
            )
            logger.info(f"📄 Job {job.id} : découpage différé (~{job.total_chunks} chunks estimés)")

        with self._lock:
            self._configs[job.id] = config
        return self.store.get_job(job.id)

    def _chunk_options(
        self,
        provider: str,
        config: ProviderConfig,
        max_tokens: Optional[int],
        overlap_tokens: Optional[int],
    ) -> tuple[int, int]:
        if max_tokens is None:
            max_tokens = recommended_chunk_size(provider, config.enhancement)
        else:
            for warning in validate_chunk_size(max_tokens, config.enhancement, provider).warnings:
                logger.warning(f"⚠️ {warning.message}")
        if overlap_tokens is None:
            overlap_tokens = min(ChunkingDefaults().overlap_tokens, max_tokens // 4)

        if max_tokens <= 0:
            raise InputError("max_tokens doit être strictement positif", code="invalid_max_tokens")
        if overlap_tokens < 0 or overlap_tokens >= max_tokens:
            raise InputError(
                "overlap_tokens doit être compris entre 0 et max_tokens",
                code="invalid_overlap_tokens",
                details={"max_tokens": max_tokens, "overlap_tokens": overlap_tokens},
            )
        return max_tokens, overlap_tokens

    def _split(self, text: str, max_tokens: int, overlap_tokens: int) -> list[TextChunk]:
        chunks = list(Chunker(self.counter, max_tokens, overlap_tokens).split(text))
        if not chunks:
            raise InputError("Le document ne contient aucun texte", code="missing_text")
        return chunks

    def _split_blocks(self, blocks: list[str], max_tokens: int) -> list[TextChunk]:
        return list(Chunker(self.counter, max_tokens).split_blocks(blocks))

    def _add_chunks(
        self,
        job_id: str,
        chunks: list[TextChunk],
        html_mode: bool = False,
        max_tokens: Optional[int] = None,
    ) -> list[Chunk]:
        if not html_mode:
            return self.store.add_chunks(job_id, chunks, max_tokens=max_tokens)
        # Chaque chunk HTML garde son texte brut pour la validation et l'affichage
        plain = [TextChunk(html_to_text(chunk.text), chunk.tokens) for chunk in chunks]
        return self.store.add_chunks(job_id, plain, source_html=[chunk.text for chunk in chunks])

    def _ensure_chunked(self, job: Job, config: ProviderConfig) -> Job:
        """
        Découpage différé, au premier translate.

        Si le pipeline LLM est activé entre-temps, la taille mémorisée est
        ramenée à la taille recommandée avec LLM.
        """
        if job.is_chunked:
            return job
        max_tokens = job.max_tokens or ChunkingDefaults().default_max_tokens
        overlap_tokens = job.overlap_tokens or 0
        if config.enhancement.enabled:
            limit = recommended_chunk_size(config.provider_name, config.enhancement)
            if max_tokens > limit:
                logger.info(
                    f"✂️ Job {job.id} : pipeline LLM actif, chunks de {max_tokens} → {limit} tokens"
                )
                max_tokens = limit
                if overlap_tokens >= max_tokens:
                    overlap_tokens = max_tokens // 4
        chunks = self._split(job.pending_text or "", max_tokens, overlap_tokens)
        self._add_chunks(job.id, chunks, max_tokens=max_tokens)
        return self.store.get_job(job.id)

    # ============================================================
    # 🔹 Traduction et reprises
    # ============================================================

    def _resolve_config(self, job: Job, config: Optional[ProviderConfig]) -> ProviderConfig:
        if config is None:
            with self._lock:
                config = self._configs.get(job.id)
        if config is None:
            config = ProviderConfig.from_env(job.api_provider)
        self.provider_resolver(config.provider).validate_config(config)
        return config

    def _pipeline_for(self, job_id: str, config: ProviderConfig) -> Optional[EnhancementPipeline]:
        if not config.enhancement.enabled:
            return None
        with self._lock:
            cached = self._pipelines.get(job_id)
            if cached is not None and cached[0] == config.enhancement:
                return cached[1]
        pipeline = self.pipeline_factory(config.enhancement)
        with self._lock:
            self._pipelines[job_id] = (config.enhancement, pipeline)
        return pipeline

    def _dispatch(self, job: Job, config: ProviderConfig) -> bool:
        provider_name = config.provider_name
        if provider_name != job.api_provider:
            logger.info(f"🔀 Job {job.id} : fournisseur {job.api_provider} → {provider_name}")
            self.store.update_job_provider(job.id, provider_name)
        if job.cancel_requested:
            self.store.set_cancel_requested(job.id, False)
        with self._lock:
            self._configs[job.id] = config
        pipeline = self._pipeline_for(job.id, config)
        started = self.worker.dispatch(job.id, config, pipeline)
        self.processor.publish(job.id)
        return started

    def translate(self, job_id: str, config: Optional[ProviderConfig] = None) -> Job:
        """
        Découpe le job si nécessaire puis lance la traduction de ses chunks.

        Raises:
            NotFoundError: Job inconnu
            InputError: Configuration fournisseur invalide
        """
        job = self.store.get_job(job_id)
        config = self._resolve_config(job, config)
        job = self._ensure_chunked(job, config)
        logger.info(f"▶️ Job {job_id} : traduction demandée ({config.redacted()})")
        self._dispatch(job, config)
        return self.store.get_job(job_id)

    def translate_sync(self, job_id: str, config: Optional[ProviderConfig] = None) -> Job:
        """Comme translate, mais traite les chunks dans le thread courant (CLI, barre tqdm)."""
        job = self.store.get_job(job_id)
        config = self._resolve_config(job, config)
        job = self._ensure_chunked(job, config)
        if config.provider_name != job.api_provider:
            self.store.update_job_provider(job.id, config.provider_name)
        with self._lock:
            self._configs[job.id] = config
        self.worker.run(job_id, config, self._pipeline_for(job_id, config))
        return self.store.get_job(job_id)

    def retry_failed(self, job_id: str, config: Optional[ProviderConfig] = None) -> int:
        """
        Remet en attente les chunks en échec (sans attendre le backoff).

        Returns:
            Nombre de chunks relancés
        """
        job = self.store.get_job(job_id)
        config = self._resolve_config(job, config)
        count = self.store.reset_failed(job_id)
        logger.info(f"🔁 Job {job_id} : {count} chunk(s) en échec relancé(s)")
        if count or self.store.pending_chunk_ids(job_id):
            self._dispatch(self.store.get_job(job_id), config)
        return count

    def retry_all(self, job_id: str, config: Optional[ProviderConfig] = None) -> int:
        """
        Retraduit tout le job, éventuellement sous un autre fournisseur
        (bascule après un dépassement de quota par exemple).

        Les chunks en cours de traitement ne sont pas touchés.
        """
        job = self.store.get_job(job_id)
        config = self._resolve_config(job, config)
        job = self._ensure_chunked(job, config)
        count = self.store.reset_all(job_id)
        logger.info(f"🔁 Job {job_id} : retraduction complète ({count} chunks, {config.provider_name})")
        self._dispatch(self.store.get_job(job_id), config)
        return count

    def resume(self, job_id: str) -> bool:
        """
        Relance le dispatch d'un job (balayage automatique).

        Returns:
            True si un runner a été démarré
        """
        job = self.store.find_job(job_id)
        if job is None or job.cancel_requested:
            return False
        try:
            config = self._resolve_config(job, None)
        except InputError as e:
            logger.warning(f"⚠️ Job {job_id} : reprise impossible ({e.message})")
            return False
        return self._dispatch(job, config)

    def cancel_job(self, job_id: str) -> Job:
        """
        Annule un job : plus aucun chunk n'est dispatché, les chunks en
        attente passent en échec, les chunks en vol se terminent.
        """
        self.store.get_job(job_id)
        self.store.set_cancel_requested(job_id, True)
        cancelled = self.store.fail_pending(job_id, CANCELLED_ERROR)
        self.store.clear_scheduled_retries(job_id)
        logger.info(f"⏹️ Job {job_id} annulé ({cancelled} chunk(s) non dispatché(s))")
        self.processor.publish(job_id)
        return self.store.get_job(job_id)

    # ============================================================
    # 🔹 Consultation et édition
    # ============================================================

    def status(self, job_id: str) -> JobProgress:
        job = self.store.get_job(job_id)
        return JobProgress(job, self.store.get_chunks(job_id))

    def list_jobs(self, limit: int = 50) -> list[Job]:
        return self.store.list_jobs(limit=limit)

    def list_chunks(self, job_id: str) -> list[Chunk]:
        self.store.get_job(job_id)
        return self.store.get_chunks(job_id)

    def update_chunk(self, chunk_id: int, translated_text: str) -> Chunk:
        """
        Remplace manuellement la traduction d'un chunk (HTML obsolète effacé).

        Raises:
            NotFoundError: Chunk inconnu
            InvalidTransitionError: Chunk en cours de traitement
        """
        if translated_text is None:
            raise InputError("translated_text requis", code="missing_text")
        chunk = self.store.get_chunk(chunk_id)
        if chunk.status not in EDITABLE or not self.store.update_chunk_text(
            chunk_id, translated_text, EDITABLE
        ):
            raise InvalidTransitionError(
                f"Chunk {chunk_id} en cours de traitement, édition impossible",
                details={"chunk_id": chunk_id, "status": chunk.status.value},
            )
        logger.info(f"✏️ Chunk {chunk.chunk_index} du job {chunk.job_id} modifié manuellement")
        self.processor.publish(chunk.job_id)
        return self.store.get_chunk(chunk_id)

    def delete_job(self, job_id: str) -> None:
        if not self.store.delete_job(job_id):
            raise NotFoundError(f"Job introuvable : {job_id}", details={"job_id": job_id})
        with self._lock:
            self._configs.pop(job_id, None)
            self._pipelines.pop(job_id, None)

    def generate(self, job_id: str) -> GeneratedDocument:
        """
        Finalise le job et réassemble le texte des chunks terminés, dans
        l'ordre des index. Les retries programmés sont abandonnés.

        Raises:
            InvalidTransitionError: Job non découpé ou chunks encore actifs
        """
        job = self.store.get_job(job_id)
        chunks = self.store.get_chunks(job_id)
        if not job.is_chunked or not chunks:
            raise InvalidTransitionError(
                f"Le job {job_id} n'a pas encore été traduit", details={"job_id": job_id}
            )
        active = [chunk.chunk_index for chunk in chunks if chunk.status.is_active]
        if active:
            raise InvalidTransitionError(
                f"Le job {job_id} a encore {len(active)} chunk(s) en cours",
                details={"job_id": job_id, "active_chunks": active},
            )

        self.store.clear_scheduled_retries(job_id)
        job = self.store.refresh_job(job_id, force=True)

        ordered = sorted(chunks, key=lambda chunk: chunk.chunk_index)
        texts = [
            chunk.translated_text
            for chunk in ordered
            if chunk.status == ChunkStatus.COMPLETED and chunk.translated_text
        ]
        missing = [chunk.chunk_index for chunk in ordered if chunk.status != ChunkStatus.COMPLETED]
        if missing:
            logger.warning(f"⚠️ Job {job_id} : document partiel, chunks manquants {missing}")
        else:
            logger.info(f"✅ Job {job_id} : document généré ({len(ordered)} chunks)")
        self.processor.publish(job_id)
        return GeneratedDocument(job, "\n\n".join(texts), missing)

    # ============================================================
    # 🔹 Événements
    # ============================================================

    def subscribe(self, job_id: str) -> Subscription:
        """subscribe-job : l'abonné reçoit tout de suite l'instantané courant."""
        progress = self.status(job_id)
        subscription = self.publisher.subscribe(job_id)
        subscription.deliver(
            {"event": EVENT_JOB_PROGRESS, "job_id": job_id, "progress": progress.to_dict()}
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()
