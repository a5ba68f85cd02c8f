"""
Fournisseur compatible OpenAI (OpenAI, DeepSeek, serveurs auto-hébergés).

La traduction passe par le client LLM partagé avec le pipeline
d'amélioration : prompt Jinja2 (translate.jinja), glossaire injecté dans
le prompt, un fichier de log par requête.
"""

import threading
from typing import Callable, Optional

from .. import glossary
from ..config import TemplateNames
from ..llm import LLM
from ..models import ProviderConfig
from .base import (
    CAP_FORMALITY,
    CAP_GLOSSARY,
    CAP_HTML,
    CAP_MODEL_SELECTION,
    TranslationProvider,
)

DEFAULT_MODEL = "gpt-4o-mini"


def _default_llm_factory(config: ProviderConfig) -> LLM:
    return LLM(
        model_name=config.model or DEFAULT_MODEL,
        url=config.base_url,
        api_key=config.api_key,
        timeout=config.timeout,
        provider="openai",
    )


class OpenAICompatibleProvider(TranslationProvider):
    name = "openai"
    capabilities = frozenset({CAP_HTML, CAP_GLOSSARY, CAP_FORMALITY, CAP_MODEL_SELECTION})
    requires_auth = True
    protects_glossary = False

    def __init__(self, llm_factory: Optional[Callable[[ProviderConfig], LLM]] = None):
        super().__init__()
        self._llm_factory = llm_factory or _default_llm_factory
        # Un client par couple (endpoint, clé) : le pool HTTP est réutilisé
        self._clients: dict[tuple[Optional[str], Optional[str]], LLM] = {}
        self._lock = threading.Lock()

    def _llm(self, config: ProviderConfig) -> LLM:
        key = (config.base_url, config.api_key)
        with self._lock:
            if key not in self._clients:
                self._clients[key] = self._llm_factory(config)
            return self._clients[key]

    def _translate(
        self, text: str, source_lang: str, target_lang: str, config: ProviderConfig
    ) -> str:
        llm = self._llm(config)
        system_prompt = llm.render_prompt(
            TemplateNames().Translate_Template,
            source_language=source_lang,
            target_language=target_lang,
            html_mode=config.html_mode,
            formality=config.formality,
            glossary=glossary.format_for_prompt(config.glossary),
        )
        return llm.query(
            system_prompt,
            text,
            context=config.options.get("log_context"),
            model=config.model or DEFAULT_MODEL,
            options={
                key: value
                for key, value in config.options.items()
                if key in ("temperature", "top_p")
            },
        )
