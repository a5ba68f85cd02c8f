"""
Interface commune des adaptateurs de traduction.

Chaque adaptateur déclare :
- ses capacités (HTML, glossaire, formalité, choix du modèle)
- s'il exige une authentification
- translate(text, source_lang, target_lang, config) -> texte traduit

Les adaptateurs sont sans état (la configuration voyage avec chaque appel)
et réutilisables entre chunks et entre jobs. Toute erreur de bibliothèque
est convertie vers la taxonomie de errors.py.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from .. import glossary
from ..errors import (
    AuthenticationError,
    InputError,
    MalformedResponseError,
    ProviderError,
    ProviderNetworkError,
    ProviderRequestError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedLanguageError,
)
from ..logger import get_logger
from ..models import ProviderConfig

logger = get_logger(__name__)

CAP_HTML = "html"
CAP_GLOSSARY = "glossary"
CAP_FORMALITY = "formality"
CAP_MODEL_SELECTION = "model-selection"


def get_httpx_timeout(timeout: float) -> httpx.Timeout:
    """Timeout de lecture configurable, connexion et pool bornés."""
    return httpx.Timeout(connect=10.0, write=60.0, read=float(timeout), pool=10.0)


class TranslationProvider(ABC):
    """
    Adaptateur de traduction.

    Attributes:
        name: Identifiant du fournisseur ("local", "google", "deepl", "openai")
        capabilities: Capacités supportées (CAP_*)
        requires_auth: True si une clé API est obligatoire
    """

    name: str = ""
    capabilities: frozenset[str] = frozenset()
    requires_auth: bool = False
    # False : le fournisseur injecte lui-même le glossaire (prompt)
    protects_glossary: bool = True

    def __init__(self, client: Optional[httpx.Client] = None):
        # Client injectable (tests : httpx.MockTransport)
        self._client = client

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def validate_config(self, config: ProviderConfig) -> None:
        """
        Vérifie la configuration avant création/lancement d'un job.

        Raises:
            InputError: Si un identifiant obligatoire manque
        """
        if self.requires_auth and not config.api_key:
            raise InputError(
                f"Clé API requise pour le fournisseur {self.name}",
                code="missing_credentials",
                details={"provider": self.name},
            )

    def translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        config: ProviderConfig,
    ) -> str:
        """
        Traduit un texte.

        Les termes du glossaire sont protégés par des jetons avant l'appel
        puis restaurés, pour les fournisseurs qui ne les gèrent pas dans
        un prompt.

        Raises:
            ProviderError: Erreur typée (auth, quota, réseau, langue, réponse)
        """
        if not text.strip():
            return text

        if config.glossary and self.supports(CAP_GLOSSARY) and self.protects_glossary:
            protected = glossary.protect(text, config.glossary, html_mode=config.html_mode)
            translated = self._translate(protected.text, source_lang, target_lang, config)
            return glossary.restore(translated, protected)

        return self._translate(text, source_lang, target_lang, config)

    @abstractmethod
    def _translate(
        self, text: str, source_lang: str, target_lang: str, config: ProviderConfig
    ) -> str:
        raise NotImplementedError

    # ============================================================
    # 🔹 Appels HTTP
    # ============================================================

    def _request(self, method: str, url: str, config: ProviderConfig, **kwargs: Any) -> Any:
        """
        Requête HTTP avec conversion des erreurs httpx.

        Returns:
            Corps JSON décodé
        """
        try:
            if self._client is not None:
                response = self._client.request(method, url, **kwargs)
            else:
                with httpx.Client(timeout=get_httpx_timeout(config.timeout)) as client:
                    response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise self.map_status_error(e.response) from e
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Délai dépassé pour {self.name}", provider=self.name
            ) from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(
                f"Erreur réseau vers {self.name} : {e}", provider=self.name
            ) from e
        except ValueError as e:
            raise MalformedResponseError(
                f"Réponse JSON invalide de {self.name}", provider=self.name
            ) from e

    def map_status_error(self, response: httpx.Response) -> ProviderError:
        """Convertit un code HTTP en erreur typée."""
        status = response.status_code
        detail = _error_detail(response)
        details = {"status": status}
        if status in (401, 403):
            return AuthenticationError(
                f"Authentification refusée par {self.name} : {detail}",
                provider=self.name,
                details=details,
            )
        if status == 429:
            return RateLimitError(
                f"Limite de débit atteinte chez {self.name} : {detail}",
                provider=self.name,
                details=details,
            )
        if status >= 500:
            return ProviderNetworkError(
                f"Erreur serveur {status} chez {self.name} : {detail}",
                provider=self.name,
                details=details,
            )
        if "language" in detail.lower():
            return UnsupportedLanguageError(
                f"Paire de langues non supportée par {self.name} : {detail}",
                provider=self.name,
                details=details,
            )
        return ProviderRequestError(
            f"Requête refusée par {self.name} ({status}) : {detail}",
            provider=self.name,
            details=details,
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, dict):
                return str(value.get("message", value))
            if value:
                return str(value)
    return str(data)[:500]
