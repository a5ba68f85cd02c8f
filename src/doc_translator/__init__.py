"""
Traduction de longs documents par découpage en chunks.

Le processus de traduction :
1. Découpe le texte en chunks bornés en tokens, avec chevauchement
2. Traduit chaque chunk via un fournisseur (LibreTranslate, Google, DeepL,
   API compatible OpenAI)
3. Améliore optionnellement chaque traduction via un LLM local
   (validation → rewrite → technical-check)
4. Réassemble le texte traduit dans l'ordre des chunks

Chaque chunk a son propre cycle de vie (pending → translating →
llm-enhancing → completed | failed) ; un échec reste isolé et peut être
relancé automatiquement avec un backoff exponentiel.

Organisation du package :
- tokens.py : Comptage de tokens (tiktoken, avec repli approximatif)
- segment.py : Découpage paragraphe → phrase avec chevauchement
- store.py : Store SQLite des jobs et chunks (transitions atomiques)
- lifecycle.py : Machine à états et statut agrégé des jobs
- retry.py : Backoff et balayage des retries
- providers/ : Adaptateurs de traduction
- enhancement/ : Pipeline d'amélioration LLM
- engine.py / worker.py : Traitement parallèle des chunks
- service.py : Façade des opérations (upload, translate, retry...)
- web/ : API HTTP Flask et flux de progression SSE

Usage minimal :
    >>> from doc_translator import TranslationService, ProviderConfig
    >>>
    >>> service = TranslationService()
    >>> job = service.upload(
    ...     "notes.txt", text=text, target_language="fr", api_provider="google"
    ... )
    >>> service.translate(job.id, ProviderConfig(provider="google"))
    >>> service.worker.wait(job.id)
    >>> print(service.generate(job.id).text)

Configuration :
    Les clés des fournisseurs se lisent depuis un fichier .env :

        DEEPL_API_KEY=votre-cle:fx
        OPENAI_API_KEY=sk-votre-cle-ici
        LIBRETRANSLATE_URL=http://localhost:5000

    Les réglages (retries, workers, base de données...) se surchargent avec
    des variables DOC_TRANSLATOR_* (voir config.py).
"""

from .errors import (
    InputError,
    InvalidTransitionError,
    NotFoundError,
    PipelineStageError,
    ProviderError,
    TranslatorError,
)
from .models import (
    Chunk,
    ChunkStatus,
    GlossaryTerm,
    Job,
    JobProgress,
    JobStatus,
    PipelineConfig,
    ProviderConfig,
    StageConfig,
)
from .segment import Chunker, TextChunk, chunk_text
from .service import GeneratedDocument, TranslationService
from .store import JobStore
from .tokens import TokenCounter

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Service
    "TranslationService",
    "GeneratedDocument",
    "JobStore",
    # Découpage
    "Chunker",
    "TextChunk",
    "TokenCounter",
    "chunk_text",
    # Modèle
    "Chunk",
    "ChunkStatus",
    "GlossaryTerm",
    "Job",
    "JobProgress",
    "JobStatus",
    "PipelineConfig",
    "ProviderConfig",
    "StageConfig",
    # Erreurs
    "InputError",
    "InvalidTransitionError",
    "NotFoundError",
    "PipelineStageError",
    "ProviderError",
    "TranslatorError",
]
