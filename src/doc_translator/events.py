"""
Diffusion de la progression des jobs (push).

Chaque événement `job-progress` transporte un instantané complet de la
progression, jamais un delta : un abonné peut perdre ou recevoir deux fois
un événement sans conséquence. Une file pleine perd son plus ancien
instantané, le plus récent est toujours conservé.
"""

import queue
import threading
from collections import defaultdict
from typing import Any, Optional

from .logger import get_logger

logger = get_logger(__name__)

EVENT_JOB_PROGRESS = "job-progress"


class Subscription:
    """
    Abonnement aux événements d'un job.

    Example:
        >>> with publisher.subscribe(job_id) as subscription:
        ...     event = subscription.get(timeout=15.0)
    """

    def __init__(self, publisher: "ProgressPublisher", job_id: str, maxsize: int = 50):
        self.publisher = publisher
        self.job_id = job_id
        self._queue: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=maxsize)
        self.closed = False

    def deliver(self, event: dict[str, Any]) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[dict[str, Any]]:
        """Prochain événement, ou None si le délai expire."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.publisher.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class ProgressPublisher:
    """Registre des abonnés par job (subscribe-job / unsubscribe-job)."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, job_id: str) -> Subscription:
        subscription = Subscription(self, job_id)
        with self._lock:
            self._subscribers[job_id].append(subscription)
        logger.debug(f"📡 Abonnement au job {job_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.job_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.job_id, None)
        subscription.closed = True
        logger.debug(f"📡 Désabonnement du job {subscription.job_id}")

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, []))

    def publish(self, job_id: str, progress: dict[str, Any]) -> int:
        """
        Diffuse un instantané à tous les abonnés du job.

        Returns:
            Nombre d'abonnés notifiés
        """
        event = {"event": EVENT_JOB_PROGRESS, "job_id": job_id, "progress": progress}
        with self._lock:
            subscribers = list(self._subscribers.get(job_id, []))
        for subscription in subscribers:
            subscription.deliver(event)
        return len(subscribers)
