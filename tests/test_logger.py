"""
Tests du système de logging (session par exécution, fichiers différés).
"""

import logging

from doc_translator.logger import LogSession, get_logger, get_session_log_path, setup_logger


def test_session_directory(isolated_logs):
    session_dir = LogSession.get_session_dir()

    assert session_dir.parent == isolated_logs
    assert session_dir.name.startswith("run_")
    assert get_session_log_path("llm_test.log") == session_dir / "llm_test.log"


def test_file_created_on_first_message():
    logger = get_logger("doc_translator.tests.lazy")
    log_file = LogSession.get_session_dir() / "jobs.log"
    assert not log_file.exists()

    logger.info("premier message")

    assert "premier message" in log_file.read_text(encoding="utf-8")
    assert get_logger("doc_translator.tests.lazy") is logger


def test_explicit_directory(tmp_path):
    logger = setup_logger("doc_translator.tests.custom", log_dir=str(tmp_path), log_filename="custom.log")

    logger.warning("dans un répertoire explicite")

    assert "WARNING" in (tmp_path / "custom.log").read_text(encoding="utf-8")


def test_console_shows_errors_only(capsys):
    logger = get_logger("doc_translator.tests.console")

    logger.info("silencieux")
    logger.error("visible")

    err = capsys.readouterr().err
    assert "visible" in err
    assert "silencieux" not in err
    assert logger.level == logging.INFO
