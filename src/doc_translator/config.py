"""
Configuration globale de doc-translator.

Chaque groupe de paramètres est une classe singleton dérivée de ConfigBase.
Les valeurs par défaut sont définies ici et peuvent être surchargées par des
variables d'environnement DOC_TRANSLATOR_<NOM> (fichier .env chargé via
python-dotenv) avant le verrouillage de la configuration.

Exemple:
    DOC_TRANSLATOR_MAX_RETRIES=3
    DOC_TRANSLATOR_SWEEP_INTERVAL=30
    DOC_TRANSLATOR_AUTO_RETRY=false
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv


class ConfigBase:
    # Attribut de classe pour le singleton
    _instance = None
    _locked: bool = False

    def __new__(cls, *args, **kwargs):
        # Chaque sous-classe possède son propre singleton
        if cls.__dict__.get("_instance") is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def lock(self):
        self._locked = True

    def unlock(self):
        object.__setattr__(self, "_locked", False)

    def __setattr__(self, name, value):
        if getattr(self, "_locked", False):
            raise AttributeError("Configuration is locked")
        super().__setattr__(name, value)


class TemplateNames(ConfigBase):
    Translate_Template: str = "translate.jinja"
    Validation_Template: str = "validate.jinja"
    Rewrite_Template: str = "rewrite.jinja"
    Technical_Check_Template: str = "technical_check.jinja"


class Logger_Level(ConfigBase):
    level: int = logging.INFO
    console_level: int = logging.ERROR
    file_level: int = logging.DEBUG


class RetryPolicy(ConfigBase):
    """
    Politique de backoff exponentiel plafonné pour les chunks en échec.

    backoff(n) = min(base_delay * factor**n, max_delay), n étant le nombre
    de retries déjà consommés par le chunk.
    """

    base_delay: float = 30.0
    factor: float = 2.0
    max_delay: float = 1800.0
    max_retries: int = 5

    def backoff(self, retry_count: int) -> float:
        """Délai (secondes) avant la prochaine tentative automatique."""
        return min(self.base_delay * (self.factor ** retry_count), self.max_delay)


class SchedulerConfig(ConfigBase):
    auto_retry: bool = True
    auto_resume: bool = True
    sweep_interval: float = 60.0
    workers: int = 4
    # Au-delà, un chunk en vol est considéré interrompu (process arrêté)
    lease_timeout: float = 1800.0


class StoreConfig(ConfigBase):
    db_path: str = "data/translator.db"


class ChunkingDefaults(ConfigBase):
    overlap_tokens: int = 100
    default_max_tokens: int = 2400

    # (fournisseur, LLM activé) -> taille de chunk recommandée (tokens)
    recommended_sizes: dict[tuple[str, bool], int] = {
        ("local", False): 1500,
        ("local", True): 1200,
        ("google", False): 1200,
        ("google", True): 1200,
        ("deepl", False): 3000,
        ("deepl", True): 2400,
        ("openai", False): 3000,
        ("openai", True): 2400,
    }

    def recommended_size(self, provider: str, llm_enabled: bool) -> int:
        return self.recommended_sizes.get(
            (provider.lower(), bool(llm_enabled)), self.default_max_tokens
        )


# Variable d'environnement -> (classe de config, attribut)
_ENV_OVERRIDES: dict[str, tuple[type[ConfigBase], str]] = {
    "LOG_LEVEL": (Logger_Level, "level"),
    "CONSOLE_LOG_LEVEL": (Logger_Level, "console_level"),
    "RETRY_BASE_DELAY": (RetryPolicy, "base_delay"),
    "RETRY_FACTOR": (RetryPolicy, "factor"),
    "RETRY_MAX_DELAY": (RetryPolicy, "max_delay"),
    "MAX_RETRIES": (RetryPolicy, "max_retries"),
    "AUTO_RETRY": (SchedulerConfig, "auto_retry"),
    "AUTO_RESUME": (SchedulerConfig, "auto_resume"),
    "SWEEP_INTERVAL": (SchedulerConfig, "sweep_interval"),
    "WORKERS": (SchedulerConfig, "workers"),
    "LEASE_TIMEOUT": (SchedulerConfig, "lease_timeout"),
    "DB_PATH": (StoreConfig, "db_path"),
    "OVERLAP_TOKENS": (ChunkingDefaults, "overlap_tokens"),
    "MAX_TOKENS": (ChunkingDefaults, "default_max_tokens"),
}


def _coerce(raw: str, current: Any) -> Any:
    """Convertit une valeur d'environnement vers le type de la valeur actuelle."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        if not raw.strip().lstrip("-").isdigit():
            # Niveaux de logging symboliques (INFO, DEBUG...)
            level = logging.getLevelName(raw.strip().upper())
            if isinstance(level, int):
                return level
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def load_env_overrides(prefix: str = "DOC_TRANSLATOR_") -> dict[str, Any]:
    """
    Applique les surcharges DOC_TRANSLATOR_* issues de l'environnement.

    Returns:
        Dictionnaire {nom_variable: valeur appliquée}

    Raises:
        ValueError: Si une valeur ne peut pas être convertie
    """
    load_dotenv()

    applied: dict[str, Any] = {}
    for name, (config_cls, attribute) in _ENV_OVERRIDES.items():
        raw = os.getenv(prefix + name)
        if raw is None:
            continue
        config = config_cls()
        try:
            value = _coerce(raw, getattr(config, attribute))
        except ValueError as e:
            raise ValueError(f"Valeur invalide pour {prefix + name}: {raw!r}") from e
        setattr(config, attribute, value)
        applied[prefix + name] = value
    return applied


def lock_config():
    """Verrouille la configuration pour empêcher les modifications ultérieures."""
    Logger_Level().lock()
    TemplateNames().lock()
    RetryPolicy().lock()
    SchedulerConfig().lock()
    StoreConfig().lock()
    ChunkingDefaults().lock()
