"""
Adaptateurs de traduction : Local (LibreTranslate), Google, DeepL,
OpenAI-compatible.

Example:
    >>> provider = get_provider("deepl")
    >>> provider.validate_config(config)
    >>> provider.translate("Hello", "en", "fr", config)
"""

import threading

from ..errors import InputError
from ..models import normalize_provider
from .base import (
    CAP_FORMALITY,
    CAP_GLOSSARY,
    CAP_HTML,
    CAP_MODEL_SELECTION,
    TranslationProvider,
)
from .deepl import DeepLProvider
from .google import GoogleProvider
from .local import LocalProvider
from .openai_compat import OpenAICompatibleProvider

PROVIDERS: dict[str, type[TranslationProvider]] = {
    "local": LocalProvider,
    "google": GoogleProvider,
    "deepl": DeepLProvider,
    "openai": OpenAICompatibleProvider,
}

_instances: dict[str, TranslationProvider] = {}
_lock = threading.Lock()


def get_provider(name: str) -> TranslationProvider:
    """
    Retourne l'adaptateur (partagé) pour un nom de fournisseur.

    Raises:
        InputError: Si le fournisseur est inconnu
    """
    key = normalize_provider(name)
    if key not in PROVIDERS:
        raise InputError(
            f"Fournisseur de traduction non supporté : {name}",
            code="unsupported_provider",
            details={"provider": name, "supported": sorted(PROVIDERS)},
        )
    with _lock:
        if key not in _instances:
            _instances[key] = PROVIDERS[key]()
        return _instances[key]


__all__ = [
    "CAP_FORMALITY",
    "CAP_GLOSSARY",
    "CAP_HTML",
    "CAP_MODEL_SELECTION",
    "DeepLProvider",
    "GoogleProvider",
    "LocalProvider",
    "OpenAICompatibleProvider",
    "PROVIDERS",
    "TranslationProvider",
    "get_provider",
]
