"""Routes de l'API JSON."""

import json
from pathlib import Path
from typing import Any, Optional

from flask import Blueprint, current_app, jsonify, request

from ..errors import InputError
from ..logger import get_logger
from ..models import PipelineConfig, ProviderConfig
from ..service import TranslationService

api_bp = Blueprint("api", __name__)
logger = get_logger(__name__)

EXTENSION_KEY = "doc_translator"

TEXT_EXTENSIONS = {".txt", ".md"}
HTML_EXTENSIONS = {".html", ".htm", ".xhtml"}


def get_service() -> TranslationService:
    return current_app.extensions[EXTENSION_KEY]


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InputError("Le corps de la requête doit être un objet JSON", code="invalid_body")
    return data


def _int_param(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InputError(f"Paramètre {name} invalide : {value!r}", code=f"invalid_{name}")


def _enhancement_param(params: dict[str, Any]) -> Optional[PipelineConfig]:
    """Pipeline LLM d'un upload : objet JSON, ou chaîne JSON en multipart."""
    value = params.get("enhancement") or params.get("llm_pipeline")
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise InputError("Paramètre enhancement invalide", code="invalid_enhancement")
    if not isinstance(value, dict):
        raise InputError("Paramètre enhancement invalide", code="invalid_enhancement")
    return PipelineConfig.from_dict(value)


def _provider_config(job_id: str) -> Optional[ProviderConfig]:
    """Configuration fournisseur du corps de requête (None = configuration mémorisée)."""
    data = _json_body()
    if not data:
        return None
    if not (data.get("provider") or data.get("api_provider")):
        data["provider"] = get_service().store.get_job(job_id).api_provider
    return ProviderConfig.from_dict(data)


def _read_upload() -> dict[str, Any]:
    """Paramètres d'upload depuis un formulaire multipart (fichier .txt/.html)."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise InputError("Aucun fichier fourni", code="missing_file")

    suffix = Path(upload.filename).suffix.lower()
    if suffix not in TEXT_EXTENSIONS | HTML_EXTENSIONS:
        raise InputError(
            f"Format de fichier non supporté : {suffix or upload.filename}",
            code="unsupported_format",
            details={"supported": sorted(TEXT_EXTENSIONS | HTML_EXTENSIONS)},
        )
    try:
        content = upload.read().decode("utf-8")
    except UnicodeDecodeError:
        raise InputError("Le fichier doit être encodé en UTF-8", code="invalid_encoding")

    params: dict[str, Any] = dict(request.form)
    params["filename"] = upload.filename
    params["html" if suffix in HTML_EXTENSIONS else "text"] = content
    return params


@api_bp.post("/upload")
def upload_document():
    """Crée un job depuis du JSON {filename, text|html, ...} ou un fichier multipart."""
    params = _read_upload() if request.files else _json_body()

    chunk_now = params.get("chunk_now", True)
    if isinstance(chunk_now, str):
        chunk_now = chunk_now.strip().lower() not in ("0", "false", "no")

    job = get_service().upload(
        filename=params.get("filename", ""),
        text=params.get("text"),
        html=params.get("html"),
        source_language=params.get("source_language") or "auto",
        target_language=params.get("target_language", ""),
        api_provider=params.get("api_provider", ""),
        output_format=params.get("output_format") or "txt",
        max_tokens=_int_param(params.get("max_tokens"), "max_tokens"),
        overlap_tokens=_int_param(params.get("overlap_tokens"), "overlap_tokens"),
        chunk_now=bool(chunk_now),
        api_key=params.get("api_key") or None,
        enhancement=_enhancement_param(params),
    )
    return jsonify({"job_id": job.id, "job": job.to_dict()}), 201


@api_bp.post("/translate/<job_id>")
def translate_job(job_id: str):
    job = get_service().translate(job_id, _provider_config(job_id))
    return jsonify({"job": job.to_dict()}), 202


@api_bp.get("/status/<job_id>")
def job_status(job_id: str):
    include_text = request.args.get("include_text", "").lower() in ("1", "true", "yes")
    return jsonify(get_service().status(job_id).to_dict(include_text=include_text))


@api_bp.get("/jobs")
def list_jobs():
    limit = _int_param(request.args.get("limit"), "limit") or 50
    if limit <= 0:
        raise InputError("Le paramètre limit doit être strictement positif", code="invalid_limit")
    jobs = get_service().list_jobs(limit=limit)
    return jsonify({"jobs": [job.to_dict() for job in jobs]})


@api_bp.get("/chunks/<job_id>")
def list_chunks(job_id: str):
    chunks = get_service().list_chunks(job_id)
    return jsonify({"chunks": [chunk.to_dict() for chunk in chunks]})


@api_bp.post("/retry/<job_id>")
def retry_failed(job_id: str):
    count = get_service().retry_failed(job_id, _provider_config(job_id))
    return jsonify({"job_id": job_id, "retried": count}), 202


@api_bp.post("/retry-all/<job_id>")
def retry_all(job_id: str):
    count = get_service().retry_all(job_id, _provider_config(job_id))
    return jsonify({"job_id": job_id, "retried": count}), 202


@api_bp.put("/chunk/<int:chunk_id>")
def update_chunk(chunk_id: int):
    data = _json_body()
    if "translated_text" not in data:
        raise InputError("translated_text requis", code="missing_text")
    chunk = get_service().update_chunk(chunk_id, data["translated_text"])
    return jsonify({"chunk": chunk.to_dict()})


@api_bp.delete("/jobs/<job_id>")
def delete_job(job_id: str):
    get_service().delete_job(job_id)
    return jsonify({"job_id": job_id, "deleted": True})


@api_bp.post("/cancel/<job_id>")
def cancel_job(job_id: str):
    job = get_service().cancel_job(job_id)
    return jsonify({"job": job.to_dict()})


@api_bp.post("/generate/<job_id>")
def generate_document(job_id: str):
    document = get_service().generate(job_id)
    return jsonify(document.to_dict())
