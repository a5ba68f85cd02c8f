"""Interface HTTP de doc-translator (API JSON + flux de progression SSE)."""

from typing import Optional

from flask import Flask

from ..service import TranslationService


def create_app(service: Optional[TranslationService] = None) -> Flask:
    """Fabrique de l'application web."""
    from .app import build_app

    return build_app(service or TranslationService())


__all__ = ["create_app"]
