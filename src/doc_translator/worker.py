import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from tqdm import tqdm

from .config import SchedulerConfig
from .engine import ChunkProcessor
from .enhancement import EnhancementPipeline
from .errors import NotFoundError
from .logger import get_logger
from .models import ChunkStatus, Job, ProviderConfig

logger = get_logger(__name__)


@dataclass
class _JobRun:
    """État d'exécution d'un job dans le worker (un seul runner par job)."""

    job_id: str
    config: ProviderConfig
    pipeline: Optional[EnhancementPipeline] = None
    rerun: bool = False
    done: threading.Event = field(default_factory=threading.Event)


@dataclass
class RunSummary:
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0


class TranslationWorker:
    """
    Pool de threads partagé entre tous les jobs.

    Chaque job actif possède un runner qui soumet ses chunks en attente au
    pool, vague après vague, jusqu'à ce qu'il n'en reste plus (ou que le job
    soit annulé). Un dispatch pendant qu'un runner tourne ne crée pas de
    second runner : il demande simplement une vague supplémentaire.
    """

    def __init__(self, processor: ChunkProcessor, max_workers: Optional[int] = None):
        self.processor = processor
        self.store = processor.store
        self.max_workers = max_workers or SchedulerConfig().workers

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="chunk-worker"
        )
        self._lock = threading.Lock()
        self._active: dict[str, _JobRun] = {}

    def dispatch(
        self,
        job_id: str,
        config: ProviderConfig,
        pipeline: Optional[EnhancementPipeline] = None,
    ) -> bool:
        """
        Lance le traitement des chunks en attente d'un job en arrière-plan.

        Returns:
            True si un nouveau runner a été démarré, False si le job était
            déjà en cours (une vague supplémentaire est alors programmée)
        """
        with self._lock:
            run = self._active.get(job_id)
            if run is not None:
                run.config = config
                run.pipeline = pipeline
                run.rerun = True
                logger.debug(f"Job {job_id} déjà actif, nouvelle vague programmée")
                return False
            run = _JobRun(job_id, config, pipeline)
            self._active[job_id] = run

        thread = threading.Thread(
            target=self._run_job, args=(run,), daemon=True, name=f"job-{job_id[:8]}"
        )
        thread.start()
        logger.info(f"🚀 Job {job_id} : traitement démarré ({self.max_workers} workers)")
        return True

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Attend la fin du runner d'un job. True si aucun runner ne tourne plus."""
        with self._lock:
            run = self._active.get(job_id)
        if run is None:
            return True
        return run.done.wait(timeout)

    def run(
        self,
        job_id: str,
        config: ProviderConfig,
        pipeline: Optional[EnhancementPipeline] = None,
    ) -> RunSummary:
        """Traite un job dans le thread courant avec une barre de progression (CLI)."""
        with self._lock:
            if job_id in self._active:
                raise RuntimeError(f"Le job {job_id} est déjà en cours de traitement")
            run = _JobRun(job_id, config, pipeline)
            self._active[job_id] = run

        summary = RunSummary()
        total = len(self.store.pending_chunk_ids(job_id))
        try:
            with tqdm(
                total=total,
                desc="Traduction des chunks",
                unit="chunk",
                ncols=100,
                bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
            ) as pbar:
                self._loop(run, pbar=pbar, summary=summary)
                self._print_summary(pbar, summary)
        except KeyboardInterrupt:
            logger.warning(f"⚠️ Job {job_id} : traduction interrompue par l'utilisateur")
            raise
        finally:
            self._finish(run)
        return summary

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    # ============================================================
    # 🔹 Runner
    # ============================================================

    def _run_job(self, run: _JobRun) -> None:
        try:
            self._loop(run)
        except Exception as e:
            logger.exception(f"❌ Job {run.job_id} : erreur inattendue du runner : {e}")
        finally:
            self._finish(run)

    def _finish(self, run: _JobRun) -> None:
        with self._lock:
            if self._active.get(run.job_id) is run:
                del self._active[run.job_id]
        run.done.set()

    def _loop(
        self,
        run: _JobRun,
        pbar: Optional[tqdm] = None,
        summary: Optional[RunSummary] = None,
    ) -> None:
        summary = summary or RunSummary()
        while True:
            job = self.store.find_job(run.job_id)
            if job is None:
                logger.info(f"Job {run.job_id} supprimé, arrêt du runner")
                return
            if job.cancel_requested:
                logger.info(f"⏹️ Job {run.job_id} annulé, arrêt du dispatch")
                return

            chunk_ids = self.store.pending_chunk_ids(run.job_id)
            claimed = 0
            if chunk_ids:
                claimed = self._run_wave(run, job, chunk_ids, pbar, summary)

            with self._lock:
                if run.rerun:
                    run.rerun = False
                    continue
                # Aucun chunk réclamé : plus rien à faire pour ce runner
                if not chunk_ids or claimed == 0:
                    if self._active.get(run.job_id) is run:
                        del self._active[run.job_id]
                    return

    def _run_wave(
        self,
        run: _JobRun,
        job: Job,
        chunk_ids: list[int],
        pbar: Optional[tqdm],
        summary: RunSummary,
    ) -> int:
        """Soumet une vague de chunks au pool et attend leurs résultats."""
        futures: list[Future] = [
            self._executor.submit(self.processor.process, chunk_id, job, run.config, run.pipeline)
            for chunk_id in chunk_ids
        ]

        claimed = 0
        for future in as_completed(futures):
            try:
                chunk = future.result()
            except NotFoundError:
                # Job supprimé pendant la vague
                summary.skipped += 1
                continue
            except Exception as e:
                logger.exception(f"Erreur inattendue : {e}")
                summary.errors += 1
                if pbar is not None:
                    pbar.write(f"\n❌ ERREUR INATTENDUE #{summary.errors}: {type(e).__name__}: {e}\n")
                continue

            if chunk is None:
                summary.skipped += 1
                continue
            claimed += 1
            if chunk.status == ChunkStatus.COMPLETED:
                summary.completed += 1
            else:
                summary.failed += 1
                if pbar is not None:
                    pbar.write(f"❌ Chunk {chunk.chunk_index} : {chunk.error}")
            if pbar is not None:
                pbar.update(1)
        return claimed

    def _print_summary(self, pbar: tqdm, summary: RunSummary) -> None:
        """Affiche le résumé final de la traduction."""
        pbar.write(f"\n{'='*60}")
        pbar.write("📊 Résumé de la traduction:")
        pbar.write(f"   ✅ Chunks traduits: {summary.completed}")
        if summary.failed > 0:
            pbar.write(f"   ❌ Chunks en échec: {summary.failed}")
        if summary.skipped > 0:
            pbar.write(f"   ⏭️  Chunks ignorés: {summary.skipped}")
        if summary.errors > 0:
            pbar.write(f"   ⚠️ Erreurs inattendues: {summary.errors}")
        if summary.failed > 0 or summary.errors > 0:
            pbar.write("   📁 Consultez les logs dans 'logs/' pour plus de détails")
        pbar.write(f"{'='*60}\n")
