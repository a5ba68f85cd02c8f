"""
Fournisseur Google Translate (endpoint public gratuit, sans clé).

Soumis à une limitation de débit implicite : un 429 est relançable.
"""

from ..errors import MalformedResponseError
from ..models import ProviderConfig
from .base import CAP_GLOSSARY, TranslationProvider

GOOGLE_URL = "https://translate.googleapis.com/translate_a/single"


class GoogleProvider(TranslationProvider):
    name = "google"
    capabilities = frozenset({CAP_GLOSSARY})
    requires_auth = False

    def _translate(
        self, text: str, source_lang: str, target_lang: str, config: ProviderConfig
    ) -> str:
        params = {
            "client": "gtx",
            "sl": source_lang or "auto",
            "tl": target_lang,
            "dt": "t",
        }
        data = self._request(
            "POST", config.base_url or GOOGLE_URL, config, params=params, data={"q": text}
        )

        # Réponse : [[["segment traduit", "segment source", ...], ...], ...]
        try:
            segments = data[0]
            return "".join(segment[0] for segment in segments if segment and segment[0])
        except (IndexError, KeyError, TypeError) as e:
            raise MalformedResponseError(
                "Format de réponse Google inattendu", provider=self.name
            ) from e
