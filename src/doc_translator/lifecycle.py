"""
Machine à états des chunks et dérivation du statut agrégé d'un job.

Transitions autorisées (chunk) :
    pending       → translating (dispatch), failed (annulation)
    translating   → llm-enhancing, completed, failed
    llm-enhancing → completed, failed
    failed        → pending (retry manuel ou automatique)
    completed     → pending (retry-all)

Le statut du job n'est jamais écrit directement : il est recalculé depuis
les statuts des chunks après chaque transition.
"""

from datetime import datetime
from typing import Iterable, NamedTuple, Optional, Sequence, Union

from .errors import InvalidTransitionError
from .models import Chunk, ChunkStatus, JobStatus

ALLOWED_TRANSITIONS: dict[ChunkStatus, frozenset[ChunkStatus]] = {
    ChunkStatus.PENDING: frozenset({ChunkStatus.TRANSLATING, ChunkStatus.FAILED}),
    ChunkStatus.TRANSLATING: frozenset(
        {ChunkStatus.LLM_ENHANCING, ChunkStatus.COMPLETED, ChunkStatus.FAILED}
    ),
    ChunkStatus.LLM_ENHANCING: frozenset({ChunkStatus.COMPLETED, ChunkStatus.FAILED}),
    ChunkStatus.FAILED: frozenset({ChunkStatus.PENDING}),
    ChunkStatus.COMPLETED: frozenset({ChunkStatus.PENDING}),
}

# Statuts depuis lesquels une édition manuelle est acceptée
EDITABLE = (ChunkStatus.PENDING, ChunkStatus.FAILED, ChunkStatus.COMPLETED)


class ChunkState(NamedTuple):
    """Vue minimale d'un chunk suffisante pour la dérivation du statut de job."""

    status: ChunkStatus
    next_retry_at: Optional[datetime] = None


ChunkLike = Union[Chunk, ChunkState]


def can_transition(current: ChunkStatus, target: ChunkStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: ChunkStatus, target: ChunkStatus, chunk_id: Optional[int] = None):
    """
    Vérifie qu'une transition est autorisée.

    Raises:
        InvalidTransitionError: Si la transition est interdite
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Transition interdite {current.value} → {target.value}",
            details={"chunk_id": chunk_id, "from": current.value, "to": target.value},
        )


def is_awaiting_retry(chunk: ChunkLike) -> bool:
    """True si le chunk est en échec mais a une nouvelle tentative programmée."""
    return chunk.status == ChunkStatus.FAILED and chunk.next_retry_at is not None


def is_settled(chunks: Iterable[ChunkLike], force: bool = False) -> bool:
    """
    True si aucun chunk ne peut plus progresser sans action manuelle.

    Args:
        force: Considère les retries programmés comme abandonnés
            (finalisation explicite via generate)
    """
    for chunk in chunks:
        if chunk.status.is_active:
            return False
        if not force and is_awaiting_retry(chunk):
            return False
    return True


def derive_job_status(chunks: Sequence[ChunkLike], force: bool = False) -> JobStatus:
    """
    Calcule le statut agrégé d'un job à partir de ses chunks.

    - completed : tous les chunks sont terminés
    - pending : aucun chunk n'a encore été dispatché
    - translating : au moins un chunk peut encore progresser
    - partial : finalisé avec un mélange de chunks terminés et en échec définitif
    - failed : finalisé sans aucun chunk terminé

    Args:
        chunks: Chunks du job (ordre indifférent)
        force: Finalisation explicite, les retries programmés ne bloquent pas

    Returns:
        Statut dérivé
    """
    if not chunks:
        return JobStatus.PENDING

    completed = sum(1 for chunk in chunks if chunk.status == ChunkStatus.COMPLETED)
    if completed == len(chunks):
        return JobStatus.COMPLETED

    if all(chunk.status == ChunkStatus.PENDING for chunk in chunks):
        return JobStatus.PENDING

    if not is_settled(chunks, force=force):
        return JobStatus.TRANSLATING

    return JobStatus.PARTIAL if completed else JobStatus.FAILED


def aggregate_counts(chunks: Iterable[ChunkLike]) -> tuple[int, int]:
    """Retourne (completed_chunks, failed_chunks)."""
    completed = failed = 0
    for chunk in chunks:
        if chunk.status == ChunkStatus.COMPLETED:
            completed += 1
        elif chunk.status == ChunkStatus.FAILED:
            failed += 1
    return completed, failed


def due_for_retry(chunk: ChunkLike, now: datetime) -> bool:
    return is_awaiting_retry(chunk) and chunk.next_retry_at <= now  # type: ignore[operator]
