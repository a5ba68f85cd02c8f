"""
Configuration pytest pour les tests doc-translator.

Ce fichier contient les fixtures communes à tous les tests :
- store SQLite temporaire
- compteur de tokens déterministe (1 mot = 1 token)
- fournisseur de traduction factice
- session de logs isolée et configuration réinitialisée
"""

import threading
from typing import Optional

import pytest

from doc_translator.config import (
    ChunkingDefaults,
    Logger_Level,
    RetryPolicy,
    SchedulerConfig,
    StoreConfig,
    TemplateNames,
)
from doc_translator.logger import LogSession
from doc_translator.models import ProviderConfig
from doc_translator.providers.base import CAP_GLOSSARY, CAP_HTML, TranslationProvider
from doc_translator.service import TranslationService
from doc_translator.store import JobStore


class WordCounter:
    """Compteur de tokens déterministe : un mot = un token."""

    def count(self, text: str) -> int:
        return len(text.split())

    def tail(self, text: str, n_tokens: int) -> str:
        if n_tokens <= 0:
            return ""
        return " ".join(text.split()[-n_tokens:])

    def close(self):
        pass


class FakeProvider(TranslationProvider):
    """
    Fournisseur factice : préfixe le texte par la langue cible.

    Attributes:
        failures: {fragment de texte: exception} levée quand le texte
            à traduire contient le fragment
        calls: Textes reçus, dans l'ordre d'arrivée
    """

    name = "fake"
    capabilities = frozenset({CAP_GLOSSARY, CAP_HTML})

    def __init__(self):
        super().__init__()
        self.failures: dict[str, BaseException] = {}
        self.calls: list[str] = []
        self.gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def _translate(self, text, source_lang, target_lang, config):
        with self._lock:
            self.calls.append(text)
        if self.gate is not None:
            self.gate.wait(timeout=5.0)
        for fragment, error in self.failures.items():
            if fragment in text:
                raise error
        return f"[{target_lang}] {text}"


def make_text(paragraphs: int, words: int, prefix: str = "p") -> str:
    """Texte de `paragraphs` paragraphes de `words` mots distincts."""
    return "\n\n".join(
        " ".join(f"{prefix}{i}w{j}" for j in range(words)) for i in range(paragraphs)
    )


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Redirige la session de logs vers un répertoire temporaire."""
    monkeypatch.setenv("DOC_TRANSLATOR_LOG_DIR", str(tmp_path / "logs"))
    LogSession.reset()
    yield tmp_path / "logs"
    LogSession.reset()


@pytest.fixture(autouse=True)
def reset_config():
    """Restaure les singletons de configuration après chaque test."""
    configs = [
        cls()
        for cls in (
            Logger_Level,
            TemplateNames,
            RetryPolicy,
            SchedulerConfig,
            StoreConfig,
            ChunkingDefaults,
        )
    ]
    saved = [dict(config.__dict__) for config in configs]
    yield
    for config, values in zip(configs, saved):
        config.__dict__.clear()
        config.__dict__.update(values)


@pytest.fixture
def counter():
    return WordCounter()


@pytest.fixture
def store(tmp_path):
    store = JobStore(str(tmp_path / "translator.db"))
    yield store
    store.close()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_config():
    return ProviderConfig(provider="fake")


@pytest.fixture
def service(store, counter, fake_provider):
    service = TranslationService(
        store,
        counter=counter,
        provider_resolver=lambda name: fake_provider,
        max_workers=2,
    )
    yield service
    service.stop(timeout=1.0)


@pytest.fixture
def chunked_job(store):
    """Job de 3 chunks en attente."""

    def _make(count: int = 3):
        from doc_translator.segment import TextChunk

        job = store.create_job("doc.txt", "en", "fr", "fake", "txt")
        chunks = store.add_chunks(
            job.id, [TextChunk(f"chunk {i} text", 3) for i in range(count)]
        )
        return store.get_job(job.id), chunks

    return _make
