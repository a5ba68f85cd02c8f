"""
Fournisseur DeepL (API v2, clé requise).

Les clés gratuites (suffixe ":fx") utilisent api-free.deepl.com.
Codes spécifiques : 403 authentification, 429 débit, 456 quota épuisé.
"""

import httpx

from ..errors import MalformedResponseError, ProviderError, RateLimitError
from ..models import ProviderConfig
from .base import CAP_FORMALITY, CAP_GLOSSARY, CAP_HTML, TranslationProvider

FREE_URL = "https://api-free.deepl.com/v2/translate"
PRO_URL = "https://api.deepl.com/v2/translate"

# Langues cibles pour lesquelles DeepL exige une variante régionale
_TARGET_VARIANTS = {"EN": "EN-US", "PT": "PT-PT"}

_FORMALITY = {"formal": "prefer_more", "informal": "prefer_less", "neutral": "default"}


def target_code(code: str) -> str:
    normalized = code.strip().upper().replace("_", "-")
    return _TARGET_VARIANTS.get(normalized, normalized)


def source_code(code: str) -> str:
    return code.strip().upper().replace("_", "-").split("-")[0]


class DeepLProvider(TranslationProvider):
    name = "deepl"
    capabilities = frozenset({CAP_HTML, CAP_GLOSSARY, CAP_FORMALITY})
    requires_auth = True

    def _url(self, config: ProviderConfig) -> str:
        if config.base_url:
            return config.base_url
        return FREE_URL if (config.api_key or "").endswith(":fx") else PRO_URL

    def _translate(
        self, text: str, source_lang: str, target_lang: str, config: ProviderConfig
    ) -> str:
        payload: dict = {"text": [text], "target_lang": target_code(target_lang)}
        if source_lang and source_lang.lower() != "auto":
            payload["source_lang"] = source_code(source_lang)
        if config.formality:
            payload["formality"] = _FORMALITY.get(config.formality, config.formality)
        tag_handling = config.tag_handling or ("html" if config.html_mode else None)
        if tag_handling:
            payload["tag_handling"] = tag_handling

        data = self._request(
            "POST",
            self._url(config),
            config,
            json=payload,
            headers={"Authorization": f"DeepL-Auth-Key {config.api_key}"},
        )
        try:
            return data["translations"][0]["text"]
        except (IndexError, KeyError, TypeError) as e:
            raise MalformedResponseError(
                "Réponse DeepL sans traduction", provider=self.name
            ) from e

    def map_status_error(self, response: httpx.Response) -> ProviderError:
        if response.status_code == 456:
            return RateLimitError(
                "Quota de caractères DeepL épuisé",
                provider=self.name,
                code="quota_exceeded",
                details={"status": 456},
            )
        return super().map_status_error(response)
