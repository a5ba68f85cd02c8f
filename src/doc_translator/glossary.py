"""
Application du glossaire autour des appels de traduction.

Deux stratégies selon le fournisseur :
- Protection par placeholders (Local, Google, DeepL) : les termes sources
  sont remplacés avant traduction par des jetons que les moteurs conservent,
  puis restaurés avec le terme cible
- Injection dans le prompt (OpenAI-compatible) : voir format_for_prompt()

Le pipeline LLM réapplique enforce() après chaque étape, les modèles ayant
tendance à retraduire les termes imposés.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .logger import get_logger
from .models import GlossaryTerm

logger = get_logger(__name__)

# Formats de jetons conservés par les moteurs de traduction
_TEXT_PLACEHOLDER = "⟪GTERM:{index}⟫"
_HTML_PLACEHOLDER = '<x id="gterm{index}"/>'

# Recherche tolérante : espaces ou guillemets modifiés par le moteur
_TEXT_PATTERN = r"⟪\s*GTERM\s*:\s*{index}\s*⟫"
_HTML_PATTERN = r"<x\s+id\s*=\s*[\"']?gterm{index}[\"']?\s*/?>"

_ANY_PLACEHOLDER = re.compile(r"⟪\s*GTERM\s*:\s*\d+\s*⟫|<x\s+id\s*=\s*[\"']?gterm\d+")


@dataclass
class ProtectedText:
    """
    Texte dont les termes du glossaire ont été remplacés par des jetons.

    Attributes:
        text: Texte à envoyer au fournisseur
        placeholders: index du jeton -> terme
        occurrences: Nombre total de remplacements
    """

    text: str
    placeholders: dict[int, GlossaryTerm] = field(default_factory=dict)
    occurrences: int = 0
    html_mode: bool = False


def _term_regex(term: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


def protect(text: str, terms: Sequence[GlossaryTerm], html_mode: bool = False) -> ProtectedText:
    """
    Remplace les termes sources par des jetons (termes les plus longs d'abord).

    Args:
        text: Texte source
        terms: Termes du glossaire
        html_mode: Jetons XML auto-fermants (conservés par tag_handling=html)

    Returns:
        ProtectedText
    """
    protected = ProtectedText(text=text, html_mode=html_mode)
    if not text or not terms:
        return protected

    template = _HTML_PLACEHOLDER if html_mode else _TEXT_PLACEHOLDER
    ordered = sorted(terms, key=lambda term: len(term.source_term), reverse=True)
    for index, term in enumerate(ordered):
        if not term.source_term.strip():
            continue
        placeholder = template.format(index=index)
        new_text, count = _term_regex(term.source_term).subn(placeholder, protected.text)
        if count:
            protected.text = new_text
            protected.placeholders[index] = term
            protected.occurrences += count

    if protected.occurrences:
        logger.debug(
            f"📖 Glossaire : {len(protected.placeholders)} terme(s), "
            f"{protected.occurrences} occurrence(s) protégée(s)"
        )
    return protected


def restore(translated: str, protected: ProtectedText) -> str:
    """Remplace les jetons restants par les termes cibles."""
    if not translated or not protected.placeholders:
        return translated

    pattern = _HTML_PATTERN if protected.html_mode else _TEXT_PATTERN
    result = translated
    for index, term in protected.placeholders.items():
        regex = re.compile(pattern.format(index=index), re.IGNORECASE)
        result, count = regex.subn(lambda _: term.target_term, result)
        if not count:
            logger.warning(
                f"⚠️ Jeton du glossaire perdu par le moteur : {term.source_term!r}"
            )
    return result


def enforce(source: str, translated: str, terms: Iterable[GlossaryTerm]) -> str:
    """
    Réimpose les termes cibles quand le terme source est resté non traduit.

    Un terme n'est remplacé que s'il apparaît dans le texte source et que sa
    forme cible est absente de la traduction.
    """
    result = translated
    for term in terms:
        if not _term_regex(term.source_term).search(source):
            continue
        if term.target_term.lower() in result.lower():
            continue
        result = _term_regex(term.source_term).sub(lambda _: term.target_term, result)
    return result


def format_for_prompt(terms: Iterable[GlossaryTerm]) -> str:
    """Liste 'source → cible' pour injection dans un prompt."""
    return "\n".join(f"- {term.source_term} → {term.target_term}" for term in terms)


def has_leftover_placeholders(text: str) -> bool:
    return bool(_ANY_PLACEHOLDER.search(text or ""))
