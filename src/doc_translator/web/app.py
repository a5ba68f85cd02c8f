"""Configuration de l'application Flask et enregistrement des blueprints."""

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from ..errors import TranslatorError
from ..logger import get_logger
from ..service import TranslationService
from .events import events_bp
from .routes import EXTENSION_KEY, api_bp

logger = get_logger(__name__)


def build_app(service: TranslationService) -> Flask:
    app = Flask(__name__)
    app.config["JSON_AS_ASCII"] = False
    app.config["MAX_CONTENT_LENGTH"] = 50 * 1024 * 1024
    app.extensions[EXTENSION_KEY] = service

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api/events")
    register_error_handlers(app)

    @app.get("/health")
    def health_check():
        logger.debug("Health check demandé")
        return jsonify({"status": "ok", "scheduler": service.scheduler.running})

    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(TranslatorError)
    def translator_error(e: TranslatorError):
        if e.status_code >= 500:
            logger.error(f"❌ {e.code}: {e.message}")
        else:
            logger.debug(f"Requête rejetée ({e.status_code}) : {e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify({"error": e.description, "code": e.name.lower().replace(" ", "_"), "details": {}}), e.code

    @app.errorhandler(Exception)
    def internal_error(e: Exception):
        logger.exception(f"Erreur interne du serveur : {e}")
        return jsonify({"error": "Erreur interne du serveur", "code": "internal_error", "details": {}}), 500
