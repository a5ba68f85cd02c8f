"""
Flux de progression en Server-Sent Events.

    GET /api/events/<job_id>

Le premier événement est l'instantané courant du job, puis un événement
`job-progress` par transition. Un commentaire keepalive est envoyé quand
rien ne se passe. Fermer la connexion désabonne le client.
"""

import json

from flask import Blueprint, Response, stream_with_context

from ..events import EVENT_JOB_PROGRESS
from ..logger import get_logger
from .routes import get_service

events_bp = Blueprint("events", __name__)
logger = get_logger(__name__)

KEEPALIVE_INTERVAL = 15.0


def format_sse(data: dict, event: str = EVENT_JOB_PROGRESS) -> str:
    payload = json.dumps(data, ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"


@events_bp.get("/<job_id>")
def job_events(job_id: str):
    service = get_service()
    subscription = service.subscribe(job_id)

    def stream():
        try:
            while True:
                event = subscription.get(timeout=KEEPALIVE_INTERVAL)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event["progress"], event["event"])
        finally:
            service.unsubscribe(subscription)
            logger.debug(f"📡 Flux SSE du job {job_id} fermé")

    return Response(
        stream_with_context(stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
