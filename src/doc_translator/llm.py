import datetime
import threading
import time
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, PackageLoader, select_autoescape
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError as OpenAIAuthenticationError,
    BadRequestError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError as OpenAIRateLimitError,
)
from openai.types.chat import ChatCompletionMessageParam

from .errors import (
    AuthenticationError,
    MalformedResponseError,
    ProviderError,
    ProviderNetworkError,
    ProviderRequestError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedLanguageError,
)
from .logger import get_logger, get_session_log_path

logger = get_logger(__name__)

# Ollama accepte n'importe quelle clé sur son endpoint compatible OpenAI
LOCAL_API_KEY = "ollama"


def map_openai_error(error: OpenAIError, provider: str) -> ProviderError:
    """Convertit une exception du SDK openai vers la taxonomie du projet."""
    if isinstance(error, (OpenAIAuthenticationError, PermissionDeniedError)):
        return AuthenticationError(f"Authentification refusée : {error}", provider=provider)
    if isinstance(error, OpenAIRateLimitError):
        return RateLimitError(f"Limite de débit atteinte : {error}", provider=provider)
    if isinstance(error, APITimeoutError):
        return ProviderTimeoutError(f"Le serveur n'a pas répondu à temps : {error}", provider=provider)
    if isinstance(error, APIConnectionError):
        return ProviderNetworkError(f"Connexion impossible : {error}", provider=provider)
    if isinstance(error, BadRequestError):
        if "language" in str(error).lower():
            return UnsupportedLanguageError(str(error), provider=provider)
        return ProviderRequestError(f"Requête refusée : {error}", provider=provider)
    if isinstance(error, APIStatusError) and error.status_code >= 500:
        return ProviderNetworkError(f"Erreur serveur {error.status_code} : {error}", provider=provider)
    if isinstance(error, APIStatusError):
        return ProviderRequestError(f"Erreur API {error.status_code} : {error}", provider=provider)
    return ProviderError(f"Erreur OpenAI générique : {error}", provider=provider)


class LLM:
    """
    Client LLM compatible OpenAI (OpenAI, DeepSeek, Ollama /v1...)
    avec :
      - rendu de templates Jinja2,
      - un fichier de log par requête,
      - retry court sur timeout et limite de débit,
      - erreurs typées (ProviderError) au lieu de réponses en texte.
    """

    def __init__(
        self,
        model_name: str,
        url: Optional[str],
        api_key: Optional[str] = None,
        prompt_dir: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 120.0,
        provider: str = "openai",
        client: Optional[OpenAI] = None,
    ):
        self.model_name = model_name
        self.provider = provider
        self.client = client or OpenAI(
            api_key=api_key or LOCAL_API_KEY,
            base_url=url,
            timeout=timeout,
            max_retries=0,
        )
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay

        # Templates du paquet, ou répertoire utilisateur
        loader = FileSystemLoader(prompt_dir) if prompt_dir else PackageLoader("doc_translator", "templates")
        self.env = Environment(
            loader=loader,
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=False,
        )

        # Compteur pour nommage unique des logs (partagé entre workers)
        self._log_counter = 0
        self._log_lock = threading.Lock()

    # -----------------------------------
    # 🔹 Rendu du template
    # -----------------------------------
    def render_prompt(self, template_name: str, **kwargs) -> str:
        """Rend un template Jinja2 avec les variables données."""
        template = self.env.get_template(template_name)
        return template.render(**kwargs)

    # -----------------------------------
    # 🔹 Gestion du log
    # -----------------------------------
    def _create_log(
        self, prompt: str, content: str, model: str, context: Optional[str] = None
    ) -> Path:
        """
        Crée le fichier de log de la requête et retourne son chemin.

        Args:
            prompt: Le prompt système envoyé au LLM
            content: Le contenu à traiter
            model: Modèle effectivement utilisé
            context: Contexte pour nommer le fichier (ex: "job_ab12_chunk_003_validation")
        """
        timestamp = datetime.datetime.now().isoformat().replace(":", "-")

        with self._log_lock:
            self._log_counter += 1
            counter = self._log_counter

        if context:
            filename = f"llm_{context}_{counter:04d}_{timestamp}.log"
        else:
            filename = f"llm_{counter:04d}_{timestamp}.log"

        log_path = get_session_log_path(filename)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        header = (
            f"=== LLM REQUEST LOG ===\n"
            f"Timestamp : {timestamp}\n"
            f"Model     : {model}\n"
            f"Prompt len: {len(prompt)} chars\n"
            f"{'-'*40}\n\n"
            f"--- PROMPT ---\n{prompt}\n\n"
            f"--- CONTENT ---\n{content}\n\n"
            f"--- RESPONSE ---\n"
        )
        with open(log_path, "w", encoding="utf-8") as f:
            f.write(header)
        return log_path

    def _append_response(self, log_path: Path, response: str):
        """Ajoute la réponse à la fin du log existant."""
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(response.strip() + "\n")

    # -----------------------------------
    # 🔹 Requête
    # -----------------------------------
    def query(
        self,
        system_prompt: str,
        content: str,
        context: Optional[str] = None,
        model: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> str:
        """
        Envoie une requête au LLM avec retry automatique sur erreurs transitoires.

        Args:
            system_prompt: Le prompt système définissant le comportement du LLM
            content: Le contenu à traiter
            context: Contexte optionnel pour nommer le fichier de log
            model: Modèle à utiliser (défaut: model_name)
            options: Réglages de génération transmis tels quels au runtime
                (num_ctx, num_batch, num_thread, num_gpu, temperature, top_p)

        Returns:
            La réponse du LLM

        Raises:
            ProviderError: Erreur typée après épuisement des tentatives
        """
        model = model or self.model_name
        options = dict(options or {})
        temperature = options.pop("temperature", self.temperature)
        top_p = options.pop("top_p", None)

        log_path = self._create_log(system_prompt, content, model, context)
        last_error: Optional[OpenAIError] = None

        for attempt in range(self.max_retries):
            try:
                messages: list[ChatCompletionMessageParam] = [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": content},
                ]
                kwargs: dict[str, Any] = {}
                if top_p is not None:
                    kwargs["top_p"] = top_p
                if options:
                    kwargs["extra_body"] = {"options": options}
                resp = self.client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=self.max_tokens,
                    **kwargs,
                )
                if not resp.choices or resp.choices[0].message.content is None:
                    self._append_response(log_path, "[RÉPONSE VIDE]")
                    raise MalformedResponseError(
                        f"Réponse vide du modèle {model}", provider=self.provider
                    )
                response_text = resp.choices[0].message.content.strip()

                if attempt > 0:
                    logger.info(
                        f"✅ Requête LLM réussie après {attempt + 1} tentative(s) "
                        f"({len(content)} chars)"
                    )
                else:
                    logger.info(f"✅ Requête LLM réussie ({len(content)} chars)")

                self._append_response(log_path, response_text)
                return response_text

            except APITimeoutError as e:
                last_error = e
                logger.warning(
                    f"⏱️ Timeout API (tentative {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2**attempt)
                    logger.info(f"⏳ Attente de {delay:.1f}s avant nouvelle tentative...")
                    time.sleep(delay)
                    continue

            except OpenAIRateLimitError as e:
                last_error = e
                logger.warning(
                    f"🚦 Limite de débit atteinte (tentative {attempt + 1}/{self.max_retries}): {e}"
                )
                if attempt < self.max_retries - 1:
                    # Pour rate limit, attendre plus longtemps
                    delay = self.retry_delay * (3**attempt)
                    logger.info(f"⏳ Attente de {delay:.1f}s avant nouvelle tentative...")
                    time.sleep(delay)
                    continue

            except OpenAIError as e:
                # Les autres erreurs API ne sont pas récupérables par retry immédiat
                logger.error(f"❌ Erreur API: {e}")
                self._append_response(log_path, f"[ERREUR API: {e}]")
                raise map_openai_error(e, self.provider) from e

        assert last_error is not None
        logger.error(f"❌ Échec définitif après {self.max_retries} tentatives")
        self._append_response(log_path, f"[ERREUR: Échec après {self.max_retries} tentatives]")
        raise map_openai_error(last_error, self.provider) from last_error
