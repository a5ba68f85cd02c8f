"""
Module de segmentation du texte en chunks pour la traduction.

Ce module découpe un texte brut en morceaux de taille limitée (en tokens)
pour l'envoi aux fournisseurs de traduction. Il préserve le contexte entre
les chunks via un chevauchement (overlap) : le chunk suivant commence par
les derniers tokens du chunk précédent.

Stratégie :
1. Découpage en paragraphes (lignes vides), paragraphes vides ignorés
2. Accumulation gloutonne des paragraphes jusqu'à max_tokens
3. Un paragraphe trop grand est redécoupé en phrases
4. Une phrase trop grande est émise seule (jamais de troncature)

En mode HTML (split_blocks), chaque bloc est une unité indivisible.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Protocol

from .logger import get_logger

logger = get_logger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "

# Coût en tokens des séparateurs lors du réassemblage d'un chunk
SEPARATOR_TOKENS = {PARAGRAPH_SEPARATOR: 2, SENTENCE_SEPARATOR: 1}

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
# La ponctuation reste attachée à la phrase qui la précède
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


class Counter(Protocol):
    def count(self, text: str) -> int: ...

    def tail(self, text: str, n_tokens: int) -> str: ...


@dataclass(frozen=True)
class TextChunk:
    """
    Morceau de texte produit par le Chunker.

    Attributes:
        text: Contenu du chunk (chevauchement inclus)
        tokens: Nombre de tokens calculé lors de l'accumulation
    """

    text: str
    tokens: int


@dataclass
class _Unit:
    text: str
    tokens: int
    joiner: str


class _OpenChunk:
    """Chunk en cours d'accumulation."""

    def __init__(self):
        self.text = ""
        self.tokens = 0
        self.has_body = False

    def reset(self, seed: str = "", seed_tokens: int = 0):
        self.text = seed
        self.tokens = seed_tokens
        self.has_body = False

    def cost_of(self, unit: _Unit) -> int:
        if not self.text:
            return unit.tokens
        return SEPARATOR_TOKENS[unit.joiner] + unit.tokens

    def add(self, unit: _Unit):
        self.tokens += self.cost_of(unit)
        if self.text:
            self.text = self.text + unit.joiner + unit.text
        else:
            self.text = unit.text
        self.has_body = True


class Chunker:
    """
    Découpe un texte en chunks bornés en tokens avec chevauchement.

    Le Chunker ne garde aucun état entre deux appels à split() : découper deux
    fois le même texte avec les mêmes paramètres donne la même séquence.

    Args:
        counter: Compteur de tokens (TokenCounter ou compatible)
        max_tokens: Taille maximale d'un chunk
        overlap_tokens: Nombre de tokens répétés au début du chunk suivant
    """

    def __init__(self, counter: Counter, max_tokens: int, overlap_tokens: int = 0):
        if max_tokens <= 0:
            raise ValueError("max_tokens doit être strictement positif")
        if overlap_tokens < 0:
            raise ValueError("overlap_tokens doit être positif ou nul")
        if overlap_tokens >= max_tokens:
            raise ValueError("overlap_tokens doit être inférieur à max_tokens")
        self.counter = counter
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    def _units(self, text: str) -> Iterator[_Unit]:
        """Génère les unités atomiques (paragraphes, ou phrases si trop grands)."""
        for paragraph in _PARAGRAPH_RE.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            tokens = self.counter.count(paragraph)
            if tokens <= self.max_tokens:
                yield _Unit(paragraph, tokens, PARAGRAPH_SEPARATOR)
                continue

            logger.debug(
                f"✂️ Paragraphe de {tokens} tokens > {self.max_tokens}, découpage en phrases"
            )
            sentences = [s.strip() for s in _SENTENCE_RE.split(paragraph) if s.strip()]
            for position, sentence in enumerate(sentences):
                joiner = PARAGRAPH_SEPARATOR if position == 0 else SENTENCE_SEPARATOR
                yield _Unit(sentence, self.counter.count(sentence), joiner)

    def _seed_from(self, text: str, overlap_tokens: int) -> tuple[str, int]:
        if overlap_tokens <= 0 or not text:
            return "", 0
        seed = self.counter.tail(text, overlap_tokens).strip()
        return seed, self.counter.count(seed)

    def split(self, text: str) -> Iterator[TextChunk]:
        """
        Découpe le texte en chunks.

        Args:
            text: Texte brut à découper

        Yields:
            TextChunk dans l'ordre du document
        """
        return self._pack(self._units(text or ""), self.overlap_tokens)

    def split_blocks(self, blocks: Iterable[str]) -> Iterator[TextChunk]:
        """
        Regroupe des blocs HTML en chunks, sans jamais couper un bloc.

        Chaque bloc est une unité atomique (lignes vides d'un <pre> comprises) ;
        un bloc plus grand que max_tokens forme un chunk à lui seul. Pas de
        chevauchement : il dupliquerait du balisage.

        Args:
            blocks: HTML externe de chaque bloc, dans l'ordre du document
        """
        units = (
            _Unit(block.strip(), self.counter.count(block.strip()), PARAGRAPH_SEPARATOR)
            for block in blocks
            if block and block.strip()
        )
        return self._pack(units, 0)

    def _pack(self, units: Iterable[_Unit], overlap_tokens: int) -> Iterator[TextChunk]:
        """Accumulation gloutonne des unités jusqu'à max_tokens."""
        current = _OpenChunk()

        for unit in units:
            if current.tokens + current.cost_of(unit) <= self.max_tokens:
                current.add(unit)
                continue

            # Fermeture du chunk courant et amorce du suivant
            if current.has_body:
                yield TextChunk(current.text, current.tokens)
                seed, seed_tokens = self._seed_from(current.text, overlap_tokens)
            else:
                seed, seed_tokens = current.text, current.tokens

            if unit.tokens > self.max_tokens:
                logger.warning(
                    f"⚠️ Unité de {unit.tokens} tokens > {self.max_tokens}, émise seule"
                )
                yield TextChunk(unit.text, unit.tokens)
                current.reset(*self._seed_from(unit.text, overlap_tokens))
                continue

            if seed and seed_tokens + SEPARATOR_TOKENS[unit.joiner] + unit.tokens > self.max_tokens:
                # La borne prime sur le chevauchement
                seed, seed_tokens = "", 0
            current.reset(seed, seed_tokens)
            current.add(unit)

        if current.has_body:
            yield TextChunk(current.text, current.tokens)


def chunk_text(
    text: str, counter: Counter, max_tokens: int, overlap_tokens: int = 0
) -> list[TextChunk]:
    """Raccourci : découpe `text` et retourne la liste complète des chunks."""
    return list(Chunker(counter, max_tokens, overlap_tokens).split(text))
