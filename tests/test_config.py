"""
Tests de la configuration (singletons, surcharges d'environnement, verrou).
"""

import logging

import pytest

from doc_translator.config import (
    ChunkingDefaults,
    Logger_Level,
    RetryPolicy,
    SchedulerConfig,
    load_env_overrides,
    lock_config,
)


def test_singletons():
    assert RetryPolicy() is RetryPolicy()
    assert SchedulerConfig() is not RetryPolicy()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DOC_TRANSLATOR_MAX_RETRIES", "3")
    monkeypatch.setenv("DOC_TRANSLATOR_AUTO_RETRY", "false")
    monkeypatch.setenv("DOC_TRANSLATOR_SWEEP_INTERVAL", "2.5")
    monkeypatch.setenv("DOC_TRANSLATOR_LOG_LEVEL", "DEBUG")

    applied = load_env_overrides()

    assert applied["DOC_TRANSLATOR_MAX_RETRIES"] == 3
    assert RetryPolicy().max_retries == 3
    assert SchedulerConfig().auto_retry is False
    assert SchedulerConfig().sweep_interval == 2.5
    assert Logger_Level().level == logging.DEBUG


def test_invalid_env_value(monkeypatch):
    monkeypatch.setenv("DOC_TRANSLATOR_WORKERS", "beaucoup")

    with pytest.raises(ValueError, match="DOC_TRANSLATOR_WORKERS"):
        load_env_overrides()


def test_lock_config():
    lock_config()

    with pytest.raises(AttributeError):
        RetryPolicy().max_retries = 10

    RetryPolicy().unlock()
    RetryPolicy().max_retries = 10
    assert RetryPolicy().max_retries == 10


def test_recommended_size_is_case_insensitive():
    assert ChunkingDefaults().recommended_size("DeepL", True) == 2400
