"""
Exceptions de doc-translator.

Taxonomie :
- Erreurs d'entrée (InputError) : rejetées de façon synchrone, aucun job créé
- Erreurs fournisseur (ProviderError et sous-classes) : portent un drapeau
  `retryable` qui décide si le RetryScheduler programme une nouvelle tentative
- Erreurs de pipeline LLM (PipelineStageError) : relançables, portent le nom
  de l'étape
- Les erreurs agrégées de job ne sont jamais levées : elles sont dérivées des
  statuts de chunks (voir lifecycle.derive_job_status)
"""

from typing import Any, Optional


class TranslatorError(Exception):
    """
    Erreur de base de doc-translator.

    Attributes:
        message: Message lisible par l'utilisateur
        code: Code court stable (ex: "rate_limit")
        details: Contexte technique additionnel
        status_code: Code HTTP associé pour la couche web
    """

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class InputError(TranslatorError):
    status_code = 400
    code = "invalid_input"


class NotFoundError(TranslatorError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(TranslatorError):
    """Transition de statut de chunk interdite par la machine à états."""

    status_code = 409
    code = "invalid_transition"


# ============================================================
# 🔹 Erreurs fournisseur
# ============================================================


class ProviderError(TranslatorError):
    """
    Erreur renvoyée par un adaptateur de traduction.

    Attributes:
        provider: Nom du fournisseur concerné
        retryable: True si une nouvelle tentative automatique a un sens
    """

    status_code = 502
    code = "provider_error"
    retryable = True
    category = "provider"

    def __init__(
        self,
        message: str,
        provider: str = "",
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, details=details)
        self.provider = provider

    def describe(self) -> str:
        """Forme enregistrée dans Chunk.error : '<catégorie>: <message>'."""
        return f"{self.category}: {self.message}"


class AuthenticationError(ProviderError):
    status_code = 401
    code = "auth_failed"
    retryable = False
    category = "auth"


class RateLimitError(ProviderError):
    status_code = 429
    code = "rate_limit"
    retryable = True
    category = "rate-limit"


class ProviderNetworkError(ProviderError):
    status_code = 503
    code = "network_error"
    retryable = True
    category = "network"


class ProviderTimeoutError(ProviderNetworkError):
    code = "timeout"
    category = "timeout"


class UnsupportedLanguageError(ProviderError):
    status_code = 400
    code = "unsupported_language"
    retryable = False
    category = "unsupported-language"


class MalformedResponseError(ProviderError):
    code = "malformed_response"
    retryable = True
    category = "malformed-response"


class ProviderRequestError(ProviderError):
    """Requête refusée par le fournisseur (4xx hors authentification et quota)."""

    status_code = 400
    code = "bad_request"
    retryable = False
    category = "request"


# ============================================================
# 🔹 Erreurs du pipeline d'amélioration LLM
# ============================================================


class PipelineStageError(TranslatorError):
    """
    Échec d'une étape du pipeline d'amélioration LLM.

    Le nom de l'étape est inclus dans le message pour qu'il apparaisse
    dans Chunk.error.
    """

    status_code = 502
    code = "pipeline_stage_failed"
    retryable = True
    category = "llm"

    def __init__(self, stage: str, cause: Exception | str):
        self.stage = stage
        self.cause = cause
        super().__init__(
            f"étape '{stage}' en échec : {cause}",
            details={"stage": stage},
        )

    def describe(self) -> str:
        return f"{self.category}[{self.stage}]: {self.cause}"

    def __repr__(self) -> str:
        return f"PipelineStageError(stage={self.stage!r}, cause={self.cause!r})"


class ChunkInterruptedError(TranslatorError):
    """Chunk resté en cours de traitement sans worker (arrêt du process, bail expiré)."""

    code = "interrupted"
    retryable = True
