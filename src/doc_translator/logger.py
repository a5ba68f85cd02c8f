"""
Module de configuration du logging pour doc-translator.

Ce module fournit une fonction centralisée pour configurer le système de logging
avec sortie console et fichier. Tous les modules de l'application utilisent
get_logger(__name__) pour obtenir un logger configuré de manière cohérente.

Fonctionnalités :
- Regroupement des logs par session d'exécution dans logs/run_YYYYMMDD_HHMMSS/
- Répertoire racine configurable via DOC_TRANSLATOR_LOG_DIR
- Création différée des fichiers de log (évite fichiers vides)
- Nommage contextuel des fichiers (jobs.log, llm_job_<id>_chunk_003_validation.log...)
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from .config import Logger_Level


# ============================================================
# 🔹 Gestionnaire de session de logs
# ============================================================


class LogSession:
    """
    Gestionnaire singleton pour regrouper tous les logs d'une exécution.

    Crée un répertoire unique par session : <base>/run_YYYYMMDD_HHMMSS/
    """

    _instance: Optional["LogSession"] = None
    _session_dir: Optional[Path] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if LogSession._session_dir is not None:
            return

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base_dir = Path(os.getenv("DOC_TRANSLATOR_LOG_DIR", "logs"))
        LogSession._session_dir = base_dir / f"run_{timestamp}"
        LogSession._session_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_session_dir(cls) -> Path:
        """Retourne le répertoire de la session en cours."""
        if cls._session_dir is None:
            cls()
        assert cls._session_dir is not None
        return cls._session_dir

    @classmethod
    def reset(cls):
        """Reset la session (utile pour les tests)."""
        cls._instance = None
        cls._session_dir = None


# ============================================================
# 🔹 Handlers de logging
# ============================================================


class TqdmLoggingHandler(logging.Handler):
    """
    Handler console compatible avec tqdm.

    Utilise tqdm.write() pour afficher les logs sans casser la barre
    de progression des traductions lancées en ligne de commande.
    """

    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
        except Exception:
            self.handleError(record)


class LazyFileHandler(logging.Handler):
    """
    Handler qui crée le fichier de log seulement au premier message.

    Le fichier est résolu dans la session courante au moment de l'écriture,
    ce qui permet aux tests de réinitialiser LogSession entre deux cas.
    """

    def __init__(
        self,
        filename: str,
        log_dir: Optional[Path] = None,
        mode: str = "a",
        encoding: str = "utf-8",
        level: int = logging.NOTSET,
    ):
        super().__init__(level)
        self.filename = filename
        self.log_dir = log_dir
        self.mode = mode
        self.encoding = encoding
        self._handler: Optional[logging.FileHandler] = None
        self._path: Optional[Path] = None

    def _target_path(self) -> Path:
        directory = self.log_dir or LogSession.get_session_dir()
        return directory / self.filename

    def _ensure_handler(self):
        """Crée (ou recrée si la session a changé) le FileHandler sous-jacent."""
        path = self._target_path()
        if self._handler is not None and self._path == path:
            return
        if self._handler is not None:
            self._handler.close()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.FileHandler(path, mode=self.mode, encoding=self.encoding)
        if self.formatter:
            self._handler.setFormatter(self.formatter)
        self._path = path

    def emit(self, record):
        try:
            self._ensure_handler()
            if self._handler:
                self._handler.emit(record)
        except Exception:
            self.handleError(record)

    def close(self):
        if self._handler:
            self._handler.close()
        super().close()


# ============================================================
# 🔹 Configuration des loggers
# ============================================================


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str,
    log_dir: Optional[str] = None,
    level: Optional[int] = None,
    console_level: Optional[int] = None,
    file_level: Optional[int] = None,
    log_filename: str = "jobs.log",
) -> logging.Logger:
    """
    Configure un logger avec sortie console et fichier.

    Args:
        name: Nom du logger (généralement __name__ du module)
        log_dir: Répertoire explicite (None = répertoire de session)
        level: Niveau global (None = Logger_Level.level)
        console_level: Niveau console (None = Logger_Level.console_level)
        file_level: Niveau fichier (None = Logger_Level.file_level)
        log_filename: Nom du fichier de log

    Returns:
        Logger configuré avec handlers console et fichier

    Example:
        >>> logger = setup_logger(__name__)
        >>> logger.info("Job %s créé", job_id)
    """
    levels = Logger_Level()
    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else levels.level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(
        console_level if console_level is not None else levels.console_level
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    file_handler = LazyFileHandler(
        filename=log_filename,
        log_dir=Path(log_dir) if log_dir else None,
    )
    file_handler.setLevel(file_level if file_level is not None else levels.file_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


def get_logger(name: str, log_filename: Optional[str] = None) -> logging.Logger:
    """
    Récupère un logger existant ou en crée un nouveau avec la configuration par défaut.

    Args:
        name: Nom du logger (généralement __name__ du module)
        log_filename: Nom optionnel du fichier de log (None = "jobs.log")

    Returns:
        Logger configuré
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logger(name, log_filename=log_filename or "jobs.log")
    return logger


def get_session_log_path(filename: str) -> Path:
    """
    Retourne le chemin complet d'un fichier de log dans le répertoire de session.

    Example:
        >>> get_session_log_path("llm_job_ab12_chunk_003_0001.log")
        PosixPath('logs/run_20251023_143022/llm_job_ab12_chunk_003_0001.log')
    """
    return LogSession.get_session_dir() / filename
