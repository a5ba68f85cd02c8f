"""
Store SQLite des jobs et chunks de traduction.

Deux tables (Job 1-N Chunk) :
    translation_jobs   : un enregistrement par document
    translation_chunks : chunks ordonnés par chunk_index, supprimés avec le job

Le store est l'unique état mutable partagé. Chaque transition de chunk est
un UPDATE conditionnel (compare-and-set sur le statut courant) exécuté sous
verrou ; le statut agrégé du job est recalculé dans la même transaction.
"""

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Sequence, TYPE_CHECKING

from .config import StoreConfig
from .errors import InvalidTransitionError, NotFoundError
from .lifecycle import ChunkState, aggregate_counts, derive_job_status
from .logger import get_logger
from .models import (
    LAYER_TRANSLATION,
    Chunk,
    ChunkStatus,
    Job,
    JobStatus,
    PipelineStageResult,
)

if TYPE_CHECKING:
    from .segment import TextChunk

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS translation_jobs (
    id TEXT PRIMARY KEY,
    filename TEXT NOT NULL,
    source_language TEXT NOT NULL,
    target_language TEXT NOT NULL,
    api_provider TEXT NOT NULL,
    output_format TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    total_chunks INTEGER NOT NULL DEFAULT 0,
    completed_chunks INTEGER NOT NULL DEFAULT 0,
    failed_chunks INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    error_message TEXT,
    cancel_requested INTEGER NOT NULL DEFAULT 0,
    max_tokens INTEGER,
    overlap_tokens INTEGER,
    pending_text TEXT
);

CREATE TABLE IF NOT EXISTS translation_chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL REFERENCES translation_jobs(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    source_text TEXT NOT NULL,
    source_html TEXT,
    translated_text TEXT,
    translated_html TEXT,
    token_count INTEGER NOT NULL DEFAULT 0,
    char_count INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    error TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    next_retry_at TEXT,
    started_at TEXT,
    completed_at TEXT,
    processing_layer TEXT,
    llm_model TEXT,
    llm_duration REAL,
    llm_stages TEXT NOT NULL DEFAULT '[]',
    UNIQUE(job_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_job ON translation_chunks(job_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_chunks_retry ON translation_chunks(status, next_retry_at);
"""

IN_FLIGHT = (ChunkStatus.TRANSLATING.value, ChunkStatus.LLM_ENHANCING.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    # Format fixe en UTC : les comparaisons SQL se font sur les chaînes
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


class JobStore:
    """
    Persistance SQLite des jobs et de leurs chunks.

    Une seule connexion partagée entre threads, protégée par un verrou
    réentrant. Toutes les méthodes de transition retournent False (ou None)
    quand le compare-and-set échoue, au lieu de lever une exception :
    perdre une course n'est pas une erreur.

    Example:
        >>> store = JobStore(":memory:")
        >>> job = store.create_job("doc.txt", "en", "fr", "deepl", "txt")
        >>> store.add_chunks(job.id, chunks)
        >>> chunk = store.claim_chunk(chunk_id)
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or StoreConfig().db_path
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        with self._conn:
            self._conn.executescript(SCHEMA)
        logger.debug(f"🗄️ Store initialisé : {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Verrou + transaction (commit en sortie, rollback sur exception)."""
        with self._lock, self._conn:
            yield self._conn

    def close(self):
        with self._lock:
            self._conn.close()

    # ============================================================
    # 🔹 Conversion des lignes
    # ============================================================

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            filename=row["filename"],
            source_language=row["source_language"],
            target_language=row["target_language"],
            api_provider=row["api_provider"],
            output_format=row["output_format"],
            status=JobStatus(row["status"]),
            total_chunks=row["total_chunks"],
            completed_chunks=row["completed_chunks"],
            failed_chunks=row["failed_chunks"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            error_message=row["error_message"],
            cancel_requested=bool(row["cancel_requested"]),
            max_tokens=row["max_tokens"],
            overlap_tokens=row["overlap_tokens"],
            pending_text=row["pending_text"],
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            job_id=row["job_id"],
            chunk_index=row["chunk_index"],
            source_text=row["source_text"],
            source_html=row["source_html"],
            translated_text=row["translated_text"],
            translated_html=row["translated_html"],
            token_count=row["token_count"],
            char_count=row["char_count"],
            status=ChunkStatus(row["status"]),
            error=row["error"],
            retry_count=row["retry_count"],
            next_retry_at=_from_db(row["next_retry_at"]),
            started_at=_from_db(row["started_at"]),
            completed_at=_from_db(row["completed_at"]),
            processing_layer=row["processing_layer"],
            llm_model=row["llm_model"],
            llm_duration=row["llm_duration"],
            llm_stages=[
                PipelineStageResult.from_dict(item)
                for item in json.loads(row["llm_stages"] or "[]")
            ],
        )

    # ============================================================
    # 🔹 Jobs
    # ============================================================

    def create_job(
        self,
        filename: str,
        source_language: str,
        target_language: str,
        api_provider: str,
        output_format: str,
        max_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
        pending_text: Optional[str] = None,
        total_chunks: int = 0,
    ) -> Job:
        """
        Crée un job vide (sans chunks).

        Args:
            pending_text: Texte brut conservé pour un découpage différé
            total_chunks: Nombre de chunks estimé tant que le découpage n'est pas fait
        """
        job_id = str(uuid.uuid4())
        now = _to_db(utcnow())
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO translation_jobs (
                    id, filename, source_language, target_language, api_provider,
                    output_format, status, total_chunks, created_at, updated_at,
                    max_tokens, overlap_tokens, pending_text
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    filename,
                    source_language,
                    target_language,
                    api_provider,
                    output_format,
                    JobStatus.PENDING.value,
                    total_chunks,
                    now,
                    now,
                    max_tokens,
                    overlap_tokens,
                    pending_text,
                ),
            )
        logger.info(f"📄 Job {job_id} créé ({filename}, {source_language} → {target_language})")
        return self.get_job(job_id)

    def find_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM translation_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_job(self, job_id: str) -> Job:
        """
        Raises:
            NotFoundError: Si le job n'existe pas
        """
        job = self.find_job(job_id)
        if job is None:
            raise NotFoundError(f"Job introuvable : {job_id}", details={"job_id": job_id})
        return job

    def list_jobs(self, limit: int = 50) -> list[Job]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM translation_jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def update_job_provider(self, job_id: str, api_provider: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE translation_jobs SET api_provider = ?, updated_at = ? WHERE id = ?",
                (api_provider, _to_db(utcnow()), job_id),
            )

    def set_cancel_requested(self, job_id: str, requested: bool) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE translation_jobs SET cancel_requested = ?, updated_at = ? WHERE id = ?",
                (int(requested), _to_db(utcnow()), job_id),
            )

    def delete_job(self, job_id: str) -> bool:
        """Supprime un job et (par cascade) tous ses chunks."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM translation_jobs WHERE id = ?", (job_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"🗑️ Job {job_id} supprimé")
        return deleted

    def jobs_with_pending_chunks(self) -> list[str]:
        """Jobs non annulés ayant encore des chunks en attente de dispatch."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT DISTINCT c.job_id FROM translation_chunks c
                JOIN translation_jobs j ON j.id = c.job_id
                WHERE c.status = ? AND j.cancel_requested = 0
                """,
                (ChunkStatus.PENDING.value,),
            ).fetchall()
        return [row["job_id"] for row in rows]

    # ============================================================
    # 🔹 Chunks
    # ============================================================

    def add_chunks(
        self,
        job_id: str,
        chunks: Sequence["TextChunk"],
        source_html: Optional[Sequence[Optional[str]]] = None,
        max_tokens: Optional[int] = None,
    ) -> list[Chunk]:
        """
        Enregistre les chunks d'un job (index contigus à partir de 0).

        Le texte brut conservé pour un découpage différé est effacé ;
        `max_tokens` remplace la taille mémorisée si elle a été réajustée.

        Raises:
            InvalidTransitionError: Si le job possède déjà des chunks
        """
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT COUNT(*) FROM translation_chunks WHERE job_id = ?", (job_id,)
            ).fetchone()[0]
            if existing:
                raise InvalidTransitionError(
                    f"Le job {job_id} est déjà découpé ({existing} chunks)",
                    details={"job_id": job_id},
                )
            conn.executemany(
                """
                INSERT INTO translation_chunks (
                    job_id, chunk_index, source_text, source_html, token_count, char_count, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        job_id,
                        index,
                        chunk.text,
                        source_html[index] if source_html else None,
                        chunk.tokens,
                        len(chunk.text),
                        ChunkStatus.PENDING.value,
                    )
                    for index, chunk in enumerate(chunks)
                ],
            )
            conn.execute(
                """
                UPDATE translation_jobs
                SET total_chunks = ?, pending_text = NULL, max_tokens = COALESCE(?, max_tokens)
                WHERE id = ?
                """,
                (len(chunks), max_tokens, job_id),
            )
            self._refresh_job(conn, job_id)
        logger.info(f"✂️ Job {job_id} : {len(chunks)} chunks enregistrés")
        return self.get_chunks(job_id)

    def get_chunks(self, job_id: str) -> list[Chunk]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM translation_chunks WHERE job_id = ? ORDER BY chunk_index",
                (job_id,),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def find_chunk(self, chunk_id: int) -> Optional[Chunk]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM translation_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
        return self._row_to_chunk(row) if row else None

    def get_chunk(self, chunk_id: int) -> Chunk:
        """
        Raises:
            NotFoundError: Si le chunk n'existe pas
        """
        chunk = self.find_chunk(chunk_id)
        if chunk is None:
            raise NotFoundError(f"Chunk introuvable : {chunk_id}", details={"chunk_id": chunk_id})
        return chunk

    def pending_chunk_ids(self, job_id: str) -> list[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM translation_chunks WHERE job_id = ? AND status = ? ORDER BY chunk_index",
                (job_id, ChunkStatus.PENDING.value),
            ).fetchall()
        return [row["id"] for row in rows]

    def due_retries(self, now: Optional[datetime] = None) -> list[Chunk]:
        """Chunks en échec dont la prochaine tentative est échue (jobs non annulés)."""
        now = now or utcnow()
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM translation_chunks
                WHERE status = ? AND next_retry_at IS NOT NULL AND next_retry_at <= ?
                  AND job_id IN (SELECT id FROM translation_jobs WHERE cancel_requested = 0)
                ORDER BY next_retry_at
                """,
                (ChunkStatus.FAILED.value, _to_db(now)),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def in_flight_chunks(self, started_before: Optional[datetime] = None) -> list[Chunk]:
        """
        Chunks en cours de traitement (translating | llm-enhancing).

        Args:
            started_before: Ne retourne que les chunks réclamés avant cet
                instant (None = tous)
        """
        query = f"SELECT * FROM translation_chunks WHERE status IN ({_placeholders(IN_FLIGHT)})"
        params: list[object] = list(IN_FLIGHT)
        if started_before is not None:
            query += " AND (started_at IS NULL OR started_at <= ?)"
            params.append(_to_db(started_before))
        with self._lock:
            rows = self._conn.execute(query + " ORDER BY started_at", params).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    # ============================================================
    # 🔹 Transitions (compare-and-set)
    # ============================================================

    def _transition(
        self,
        conn: sqlite3.Connection,
        chunk_id: int,
        from_statuses: Sequence[str],
        assignments: dict[str, object],
    ) -> bool:
        """UPDATE conditionnel ; retourne True si la ligne a changé de statut."""
        columns = ", ".join(f"{column} = ?" for column in assignments)
        cursor = conn.execute(
            f"UPDATE translation_chunks SET {columns} "
            f"WHERE id = ? AND status IN ({_placeholders(from_statuses)})",
            (*assignments.values(), chunk_id, *from_statuses),
        )
        if cursor.rowcount == 0:
            return False
        job_id = conn.execute(
            "SELECT job_id FROM translation_chunks WHERE id = ?", (chunk_id,)
        ).fetchone()["job_id"]
        self._refresh_job(conn, job_id)
        return True

    def claim_chunk(self, chunk_id: int) -> Optional[Chunk]:
        """
        Réclame un chunk pour traduction : pending → translating.

        Garantit qu'un seul worker traite un chunk donné à un instant donné.

        Returns:
            Le chunk réclamé, ou None si un autre worker l'a déjà pris
            (ou si son job est en cours d'annulation)
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks
                SET status = ?, started_at = ?, completed_at = NULL, error = NULL,
                    next_retry_at = NULL, processing_layer = ?
                WHERE id = ? AND status = ? AND job_id IN (
                    SELECT id FROM translation_jobs WHERE cancel_requested = 0
                )
                """,
                (
                    ChunkStatus.TRANSLATING.value,
                    _to_db(utcnow()),
                    LAYER_TRANSLATION,
                    chunk_id,
                    ChunkStatus.PENDING.value,
                ),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM translation_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            self._refresh_job(conn, row["job_id"])
        return self._row_to_chunk(row)

    def start_enhancing(
        self,
        chunk_id: int,
        translated_text: str,
        translated_html: Optional[str] = None,
    ) -> bool:
        """translating → llm-enhancing, avec la traduction brute du fournisseur."""
        with self.transaction() as conn:
            return self._transition(
                conn,
                chunk_id,
                (ChunkStatus.TRANSLATING.value,),
                {
                    "status": ChunkStatus.LLM_ENHANCING.value,
                    "translated_text": translated_text,
                    "translated_html": translated_html,
                },
            )

    def record_stage(
        self,
        chunk_id: int,
        result: PipelineStageResult,
        translated_text: Optional[str] = None,
        llm_model: Optional[str] = None,
    ) -> bool:
        """
        Ajoute le résultat d'une étape LLM (ajout seulement) au chunk.

        Le statut reste llm-enhancing ; seul processing_layer change.
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT llm_stages, status FROM translation_chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
            if row is None or row["status"] != ChunkStatus.LLM_ENHANCING.value:
                return False
            stages = json.loads(row["llm_stages"] or "[]")
            stages.append(result.to_dict())
            assignments: dict[str, object] = {
                "llm_stages": json.dumps(stages),
                "processing_layer": result.stage,
            }
            if translated_text is not None:
                assignments["translated_text"] = translated_text
                assignments["translated_html"] = None
            if llm_model is not None:
                assignments["llm_model"] = llm_model
            columns = ", ".join(f"{column} = ?" for column in assignments)
            conn.execute(
                f"UPDATE translation_chunks SET {columns} WHERE id = ?",
                (*assignments.values(), chunk_id),
            )
        return True

    def complete_chunk(
        self,
        chunk_id: int,
        translated_text: str,
        translated_html: Optional[str] = None,
        llm_model: Optional[str] = None,
        llm_duration: Optional[float] = None,
    ) -> bool:
        """translating | llm-enhancing → completed."""
        assignments: dict[str, object] = {
            "status": ChunkStatus.COMPLETED.value,
            "translated_text": translated_text,
            "translated_html": translated_html,
            "completed_at": _to_db(utcnow()),
            "error": None,
            "next_retry_at": None,
        }
        if llm_model is not None:
            assignments["llm_model"] = llm_model
        if llm_duration is not None:
            assignments["llm_duration"] = llm_duration
        with self.transaction() as conn:
            return self._transition(conn, chunk_id, IN_FLIGHT, assignments)

    def fail_chunk(
        self,
        chunk_id: int,
        error: str,
        next_retry_at: Optional[datetime] = None,
    ) -> bool:
        """
        translating | llm-enhancing → failed.

        Args:
            error: Message enregistré ("<catégorie>: <message>")
            next_retry_at: Prochaine tentative automatique (None = épuisé)
        """
        with self.transaction() as conn:
            return self._transition(
                conn,
                chunk_id,
                IN_FLIGHT,
                {
                    "status": ChunkStatus.FAILED.value,
                    "error": error,
                    "next_retry_at": _to_db(next_retry_at),
                    "completed_at": _to_db(utcnow()),
                },
            )

    def reset_for_retry(self, chunk_id: int) -> bool:
        """failed → pending : incrémente retry_count et efface l'erreur."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks
                SET status = ?, retry_count = retry_count + 1, error = NULL, next_retry_at = NULL
                WHERE id = ? AND status = ?
                """,
                (ChunkStatus.PENDING.value, chunk_id, ChunkStatus.FAILED.value),
            )
            if cursor.rowcount == 0:
                return False
            job_id = conn.execute(
                "SELECT job_id FROM translation_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()["job_id"]
            self._refresh_job(conn, job_id)
        return True

    def reset_failed(self, job_id: str) -> int:
        """Remet en attente tous les chunks en échec d'un job (retry manuel)."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks
                SET status = ?, retry_count = retry_count + 1, error = NULL, next_retry_at = NULL
                WHERE job_id = ? AND status = ?
                """,
                (ChunkStatus.PENDING.value, job_id, ChunkStatus.FAILED.value),
            )
            self._refresh_job(conn, job_id)
        return cursor.rowcount

    def reset_all(self, job_id: str) -> int:
        """
        Remet en attente tous les chunks non actifs d'un job (retry-all).

        Les traductions existantes sont effacées ; retry_count n'augmente que
        pour les chunks qui étaient en échec.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks
                SET retry_count = retry_count + (CASE WHEN status = ? THEN 1 ELSE 0 END),
                    status = ?, error = NULL, next_retry_at = NULL,
                    translated_text = NULL, translated_html = NULL,
                    completed_at = NULL, processing_layer = NULL,
                    llm_model = NULL, llm_duration = NULL, llm_stages = '[]'
                WHERE job_id = ? AND status IN (?, ?)
                """,
                (
                    ChunkStatus.FAILED.value,
                    ChunkStatus.PENDING.value,
                    job_id,
                    ChunkStatus.FAILED.value,
                    ChunkStatus.COMPLETED.value,
                ),
            )
            self._refresh_job(conn, job_id)
        return cursor.rowcount

    def fail_pending(self, job_id: str, error: str) -> int:
        """pending → failed pour tout un job (annulation), sans retry programmé."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks
                SET status = ?, error = ?, next_retry_at = NULL
                WHERE job_id = ? AND status = ?
                """,
                (ChunkStatus.FAILED.value, error, job_id, ChunkStatus.PENDING.value),
            )
            self._refresh_job(conn, job_id)
        return cursor.rowcount

    def clear_scheduled_retries(self, job_id: str) -> int:
        """Abandonne les retries programmés d'un job (finalisation explicite)."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE translation_chunks SET next_retry_at = NULL
                WHERE job_id = ? AND status = ? AND next_retry_at IS NOT NULL
                """,
                (job_id, ChunkStatus.FAILED.value),
            )
            self._refresh_job(conn, job_id)
        return cursor.rowcount

    def update_chunk_text(self, chunk_id: int, translated_text: str, editable: Sequence[ChunkStatus]) -> bool:
        """
        Édition manuelle : remplace la traduction et marque le chunk terminé.

        La version HTML devenue obsolète est effacée.
        """
        with self.transaction() as conn:
            return self._transition(
                conn,
                chunk_id,
                [status.value for status in editable],
                {
                    "status": ChunkStatus.COMPLETED.value,
                    "translated_text": translated_text,
                    "translated_html": None,
                    "error": None,
                    "next_retry_at": None,
                    "processing_layer": "manual",
                    "completed_at": _to_db(utcnow()),
                },
            )

    # ============================================================
    # 🔹 Agrégat du job
    # ============================================================

    def _refresh_job(self, conn: sqlite3.Connection, job_id: str, force: bool = False) -> None:
        """Recalcule compteurs et statut du job depuis ses chunks."""
        rows = conn.execute(
            "SELECT status, next_retry_at FROM translation_chunks WHERE job_id = ?",
            (job_id,),
        ).fetchall()
        states = [
            ChunkState(ChunkStatus(row["status"]), _from_db(row["next_retry_at"]))
            for row in rows
        ]
        completed, failed = aggregate_counts(states)
        status = derive_job_status(states, force=force)

        error_message = None
        if status in (JobStatus.PARTIAL, JobStatus.FAILED):
            error_message = f"{failed} chunk(s) en échec sur {len(states)}"

        if states:
            conn.execute(
                """
                UPDATE translation_jobs
                SET status = ?, total_chunks = ?, completed_chunks = ?, failed_chunks = ?,
                    error_message = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    status.value,
                    len(states),
                    completed,
                    failed,
                    error_message,
                    _to_db(utcnow()),
                    job_id,
                ),
            )

    def refresh_job(self, job_id: str, force: bool = False) -> Job:
        with self.transaction() as conn:
            self._refresh_job(conn, job_id, force=force)
        return self.get_job(job_id)
