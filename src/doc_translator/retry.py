"""
Planification des nouvelles tentatives pour les chunks en échec.

- À l'échec : next_retry_at = now + backoff(retry_count), si l'erreur est
  relançable, que l'auto-retry est actif et que le budget n'est pas épuisé
- En arrière-plan : un thread de balayage remet en attente les chunks dont
  l'échéance est passée et relance le dispatch de leurs jobs
- Auto-reprise : le même balayage relance les jobs ayant encore des chunks
  en attente sans worker actif (après un redémarrage par exemple)
- Bail : un chunk resté en cours de traitement au-delà de lease_timeout (ou
  au démarrage, aucun worker ne survivant au process) passe en échec
  "interrupted" avec un retry programmé
"""

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional, TYPE_CHECKING

from .config import RetryPolicy, SchedulerConfig
from .errors import ChunkInterruptedError, PipelineStageError, ProviderError, TranslatorError
from .logger import get_logger
from .models import Chunk
from .store import utcnow

if TYPE_CHECKING:
    from .store import JobStore

logger = get_logger(__name__)


def is_retryable(error: BaseException) -> bool:
    """Les erreurs inattendues (hors taxonomie) sont considérées transitoires."""
    if isinstance(error, TranslatorError):
        return error.retryable
    return True


def describe_error(error: BaseException) -> str:
    """Forme enregistrée dans Chunk.error : '<catégorie>: <message>'."""
    if isinstance(error, (ProviderError, PipelineStageError)):
        return error.describe()
    if isinstance(error, TranslatorError):
        return f"{error.code}: {error.message}"
    return f"internal: {type(error).__name__}: {error}"


def next_retry_time(
    error: BaseException,
    retry_count: int,
    now: Optional[datetime] = None,
    policy: Optional[RetryPolicy] = None,
    auto_retry: Optional[bool] = None,
) -> Optional[datetime]:
    """
    Calcule l'échéance de la prochaine tentative automatique.

    Args:
        error: Erreur ayant fait échouer le chunk
        retry_count: Nombre de retries déjà consommés
        now: Instant de l'échec (défaut: maintenant, UTC)
        policy: Politique de backoff (défaut: singleton RetryPolicy)
        auto_retry: Surcharge du drapeau SchedulerConfig.auto_retry

    Returns:
        L'échéance (strictement future), ou None si aucune tentative
        automatique ne doit être programmée
    """
    policy = policy or RetryPolicy()
    if auto_retry is None:
        auto_retry = SchedulerConfig().auto_retry

    if not auto_retry or not is_retryable(error):
        return None
    if retry_count >= policy.max_retries:
        return None

    delay = max(policy.backoff(retry_count), 0.001)
    return (now or utcnow()) + timedelta(seconds=delay)


class RetryScheduler:
    """
    Thread de balayage des retries programmés et des jobs à reprendre.

    Le scheduler ne traduit rien lui-même : il remet les chunks en attente
    dans le store puis appelle `dispatch(job_id)`, fourni par l'appelant
    (le TranslationService), qui décide s'il faut lancer un worker.

    Example:
        >>> scheduler = RetryScheduler(store, dispatch=service.resume)
        >>> scheduler.start()
        >>> ...
        >>> scheduler.stop(timeout=5.0)
    """

    def __init__(
        self,
        store: "JobStore",
        dispatch: Callable[[str], object],
        interval: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatch = dispatch
        self.interval = interval if interval is not None else SchedulerConfig().sweep_interval
        self.clock = clock

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self, now: Optional[datetime] = None) -> list[Chunk]:
        """
        Un passage de balayage.

        Returns:
            Les chunks remis en attente pendant ce passage
        """
        config = SchedulerConfig()
        now = now or self.clock()
        reset: list[Chunk] = []
        jobs: dict[str, list[int]] = defaultdict(list)

        self.recover_interrupted(now - timedelta(seconds=config.lease_timeout), now)

        if config.auto_retry:
            for chunk in self.store.due_retries(now):
                if self.store.reset_for_retry(chunk.id):
                    reset.append(chunk)
                    jobs[chunk.job_id].append(chunk.chunk_index)

        for job_id, indices in jobs.items():
            logger.info(f"🔁 Job {job_id} : retry automatique des chunks {indices}")

        to_dispatch = set(jobs)
        if config.auto_resume:
            to_dispatch.update(self.store.jobs_with_pending_chunks())

        for job_id in sorted(to_dispatch):
            try:
                self.dispatch(job_id)
            except Exception as e:
                logger.exception(f"❌ Échec du dispatch du job {job_id} : {e}")

        return reset

    def recover_interrupted(
        self, started_before: Optional[datetime] = None, now: Optional[datetime] = None
    ) -> list[Chunk]:
        """
        Passe en échec les chunks en vol dont le bail a expiré.

        Args:
            started_before: Limite du bail (None = tous les chunks en vol,
                utilisé au démarrage du service)
            now: Instant de référence pour le backoff

        Returns:
            Les chunks interrompus
        """
        now = now or self.clock()
        interrupted: list[Chunk] = []
        for chunk in self.store.in_flight_chunks(started_before):
            error = ChunkInterruptedError(
                f"chunk resté en statut {chunk.status.value} sans worker actif"
            )
            job = self.store.find_job(chunk.job_id)
            retry_at = None
            if job is not None and not job.cancel_requested:
                retry_at = next_retry_time(error, chunk.retry_count, now=now)
            if self.store.fail_chunk(chunk.id, describe_error(error), retry_at):
                interrupted.append(chunk)
                logger.warning(
                    f"⚠️ Job {chunk.job_id} : chunk {chunk.chunk_index} interrompu "
                    f"({chunk.status.value}), retry {'programmé' if retry_at else 'non programmé'}"
                )
        return interrupted

    def start(self) -> None:
        """Démarre le thread de balayage (daemon)."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("RetryScheduler déjà démarré")
            return

        logger.info(f"⏰ Démarrage du balayage des retries (intervalle {self.interval}s)")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="RetryScheduler")
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.sweep()
            except Exception as e:
                logger.exception(f"❌ Erreur inattendue pendant le balayage : {e}")
        logger.debug("Thread de balayage arrêté")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
