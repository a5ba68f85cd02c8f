"""
Comptage de tokens pour le découpage des documents.

TokenCounter encapsule un encodage tiktoken. C'est une ressource explicite,
construite par l'appelant et passée par référence au Chunker ; elle se
libère en sortie de bloc `with`. Si l'encodage ne peut pas être chargé
(pas de réseau pour télécharger le BPE, par exemple), le compteur bascule
en mode approximation : 4 caractères ≈ 1 token.
"""

import math
from typing import Optional

import tiktoken

from .logger import get_logger

logger = get_logger(__name__)

# Encodage utilisé par l'outil d'origine pour estimer les tailles de chunks
DEFAULT_ENCODING = "cl100k_base"

# Approximation de secours
CHARS_PER_TOKEN = 4


def tokens_to_chars(tokens: int) -> int:
    return tokens * CHARS_PER_TOKEN


def chars_to_tokens(chars: int) -> int:
    return math.ceil(chars / CHARS_PER_TOKEN)


def estimate_chunk_count(total_chars: int, max_tokens: int) -> int:
    """
    Estime le nombre de chunks d'un document à partir de sa longueur déclarée.

    Args:
        total_chars: Longueur du texte en caractères
        max_tokens: Taille maximale d'un chunk en tokens

    Returns:
        Nombre estimé de chunks (0 pour un texte vide)
    """
    if total_chars <= 0:
        return 0
    if max_tokens <= 0:
        raise ValueError("max_tokens doit être strictement positif")
    return math.ceil(chars_to_tokens(total_chars) / max_tokens)


def _decode_suffix(data: bytes) -> str:
    """
    Décode une fin de texte coupée sur une frontière de tokens.

    Un caractère multi-octets (CJK, emoji...) peut être réparti sur plusieurs
    tokens : les octets de continuation orphelins en tête sont ignorés.
    """
    start = 0
    while start < len(data) and start < 3 and (data[start] & 0xC0) == 0x80:
        start += 1
    return data[start:].decode("utf-8", errors="ignore")


class TokenCounter:
    """
    Convertit texte ↔ nombre de tokens, avec repli sur l'approximation.

    Example:
        >>> with TokenCounter() as counter:
        ...     counter.count("Bonjour tout le monde")
        5
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self._encoding: Optional["tiktoken.Encoding"] = None
        self._closed = False
        try:
            self._encoding = tiktoken.get_encoding(encoding_name)
        except Exception as e:
            logger.warning(
                f"⚠️ Encodage {encoding_name} indisponible, mode approximation activé : {e}"
            )

    @property
    def approximate(self) -> bool:
        """True si le compteur utilise l'approximation 4 caractères / token."""
        return self._encoding is None

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._encoding is not None:
            try:
                return len(self._encoding.encode(text, disallowed_special=()))
            except Exception as e:
                logger.warning(f"⚠️ Échec du comptage tiktoken, approximation : {e}")
        return chars_to_tokens(len(text))

    def tail(self, text: str, n_tokens: int) -> str:
        """
        Retourne le texte correspondant aux `n_tokens` derniers tokens.

        Utilisé pour amorcer le chunk suivant (chevauchement).
        """
        if n_tokens <= 0 or not text:
            return ""
        if self._encoding is not None:
            try:
                tokens = self._encoding.encode(text, disallowed_special=())
                return _decode_suffix(self._encoding.decode_bytes(tokens[-n_tokens:]))
            except Exception as e:
                logger.warning(f"⚠️ Échec de l'extraction tiktoken, approximation : {e}")
        return text[-tokens_to_chars(n_tokens):]

    def close(self):
        """Libère l'encodage ; le compteur reste utilisable en mode approximation."""
        self._encoding = None
        self._closed = True

    def __enter__(self) -> "TokenCounter":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        mode = "approximation" if self.approximate else self.encoding_name
        return f"TokenCounter({mode})"
