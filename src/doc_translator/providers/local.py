"""
Fournisseur local : serveur LibreTranslate (aucune clé requise).

L'URL du serveur vient de ProviderConfig.base_url, ou de la variable
d'environnement LIBRETRANSLATE_URL, ou http://localhost:5000 par défaut.
"""

import os

from ..errors import MalformedResponseError
from ..models import ProviderConfig
from .base import CAP_GLOSSARY, CAP_HTML, TranslationProvider

DEFAULT_URL = "http://localhost:5000"


def normalize_language_code(code: str) -> str:
    """LibreTranslate attend des codes courts ("pt-BR" → "pt")."""
    return code.strip().lower().replace("_", "-").split("-")[0]


class LocalProvider(TranslationProvider):
    name = "local"
    capabilities = frozenset({CAP_HTML, CAP_GLOSSARY})
    requires_auth = False

    def _translate(
        self, text: str, source_lang: str, target_lang: str, config: ProviderConfig
    ) -> str:
        base_url = (config.base_url or os.getenv("LIBRETRANSLATE_URL") or DEFAULT_URL).rstrip("/")
        payload = {
            "q": text,
            "source": normalize_language_code(source_lang),
            "target": normalize_language_code(target_lang),
            "format": "html" if config.html_mode else "text",
        }
        if config.api_key:
            payload["api_key"] = config.api_key

        data = self._request("POST", f"{base_url}/translate", config, json=payload)
        translated = data.get("translatedText") if isinstance(data, dict) else None
        if not isinstance(translated, str):
            raise MalformedResponseError(
                "Réponse LibreTranslate sans champ translatedText", provider=self.name
            )
        return translated
