"""
Tests de l'API HTTP (client de test Flask).
"""

import io
import json

import pytest

from conftest import make_text
from doc_translator.web import create_app
from doc_translator.web.events import format_sse


@pytest.fixture
def client(service):
    app = create_app(service)
    app.config["TESTING"] = True
    return app.test_client()


def upload_json(client, **overrides):
    payload = {
        "filename": "doc.txt",
        "text": make_text(3, 10),
        "source_language": "en",
        "target_language": "fr",
        "api_provider": "fake",
        "max_tokens": 10,
        "overlap_tokens": 0,
    }
    payload.update(overrides)
    return client.post("/api/upload", json=payload)


class TestUploadRoutes:
    def test_json_upload(self, client):
        response = upload_json(client)

        assert response.status_code == 201
        data = response.get_json()
        assert data["job"]["total_chunks"] == 3
        assert data["job"]["status"] == "pending"

    def test_input_error_as_json(self, client):
        response = upload_json(client, target_language="")

        assert response.status_code == 400
        assert response.get_json()["code"] == "missing_target_language"

    def test_llm_enabled_upload_uses_llm_chunk_size(self, client):
        plain = upload_json(client, api_provider="deepl", max_tokens=None, overlap_tokens=None)
        enhanced = upload_json(
            client,
            api_provider="deepl",
            max_tokens=None,
            overlap_tokens=None,
            enhancement={"enabled": True},
        )

        assert plain.get_json()["job"]["max_tokens"] == 3000
        assert enhanced.get_json()["job"]["max_tokens"] == 2400

    def test_multipart_enhancement_as_json_string(self, client):
        response = client.post(
            "/api/upload",
            data={
                "file": (io.BytesIO(make_text(2, 10).encode("utf-8")), "doc.txt"),
                "target_language": "fr",
                "api_provider": "deepl",
                "enhancement": json.dumps({"enabled": True}),
            },
            content_type="multipart/form-data",
        )

        assert response.status_code == 201
        assert response.get_json()["job"]["max_tokens"] == 2400

    def test_invalid_enhancement(self, client):
        response = upload_json(client, enhancement="{pas du json")

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_enhancement"

    def test_multipart_text_file(self, client):
        response = client.post(
            "/api/upload",
            data={
                "file": (io.BytesIO(make_text(2, 10).encode("utf-8")), "doc.txt"),
                "target_language": "fr",
                "api_provider": "fake",
                "max_tokens": "10",
                "overlap_tokens": "0",
                "chunk_now": "false",
            },
            content_type="multipart/form-data",
        )

        assert response.status_code == 201
        assert response.get_json()["job"]["chunked"] is False

    @pytest.mark.parametrize(
        "filename, content, code",
        [
            ("doc.pdf", b"%PDF-1.4", "unsupported_format"),
            ("doc.txt", b"\xff\xfe\xfa", "invalid_encoding"),
        ],
    )
    def test_rejected_files(self, client, filename, content, code):
        response = client.post(
            "/api/upload",
            data={"file": (io.BytesIO(content), filename), "target_language": "fr", "api_provider": "fake"},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == code

    def test_invalid_integer_parameter(self, client):
        response = upload_json(client, max_tokens="beaucoup")

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_max_tokens"

    def test_non_object_body(self, client):
        response = client.post("/api/upload", json=["doc.txt"])

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_body"


class TestJobRoutes:
    def test_translate_status_generate(self, client, service):
        job_id = upload_json(client).get_json()["job_id"]

        response = client.post(f"/api/translate/{job_id}")
        assert response.status_code == 202
        assert service.worker.wait(job_id, timeout=10)

        status = client.get(f"/api/status/{job_id}").get_json()
        assert status["job"]["status"] == "completed"
        assert status["progress"]["percentage"] == 100
        assert "translated_text" not in status["progress"]["chunks"][0]

        status = client.get(f"/api/status/{job_id}?include_text=1").get_json()
        assert status["progress"]["chunks"][0]["translated_text"].startswith("[fr] ")

        document = client.post(f"/api/generate/{job_id}").get_json()
        assert document["partial"] is False
        assert document["text"].count("[fr] ") == 3

    def test_translate_with_body_keeps_job_provider(self, client, service):
        job_id = upload_json(client).get_json()["job_id"]

        response = client.post(
            f"/api/translate/{job_id}",
            json={"glossary": [{"source_term": "p0w0", "target_term": "mot"}]},
        )

        assert response.status_code == 202
        assert service.worker.wait(job_id, timeout=10)
        chunks = client.get(f"/api/chunks/{job_id}").get_json()["chunks"]
        assert chunks[0]["translated_text"].startswith("[fr] mot ")
        assert response.get_json()["job"]["api_provider"] == "fake"

    def test_unknown_job(self, client):
        response = client.get("/api/status/inconnu")

        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_generate_conflict_while_pending(self, client):
        job_id = upload_json(client).get_json()["job_id"]

        response = client.post(f"/api/generate/{job_id}")

        assert response.status_code == 409
        assert response.get_json()["code"] == "invalid_transition"

    def test_cancel_and_retry(self, client, service):
        job_id = upload_json(client).get_json()["job_id"]

        job = client.post(f"/api/cancel/{job_id}").get_json()["job"]
        assert job["cancel_requested"] is True
        assert job["failed_chunks"] == 3

        response = client.post(f"/api/retry/{job_id}")
        assert response.status_code == 202
        assert response.get_json()["retried"] == 3
        assert service.worker.wait(job_id, timeout=10)

        response = client.post(f"/api/retry-all/{job_id}")
        assert response.get_json()["retried"] == 3
        assert service.worker.wait(job_id, timeout=10)

    def test_edit_chunk(self, client, service):
        job_id = upload_json(client).get_json()["job_id"]
        client.post(f"/api/translate/{job_id}")
        assert service.worker.wait(job_id, timeout=10)
        chunk_id = client.get(f"/api/chunks/{job_id}").get_json()["chunks"][0]["id"]

        missing = client.put(f"/api/chunk/{chunk_id}", json={})
        assert missing.status_code == 400

        chunk = client.put(f"/api/chunk/{chunk_id}", json={"translated_text": "Corrigé"}).get_json()["chunk"]
        assert chunk["translated_text"] == "Corrigé"
        assert chunk["processing_layer"] == "manual"

    def test_list_and_delete(self, client):
        first = upload_json(client).get_json()["job_id"]
        second = upload_json(client).get_json()["job_id"]

        jobs = client.get("/api/jobs").get_json()["jobs"]
        assert [job["id"] for job in jobs] == [second, first]
        assert client.get("/api/jobs?limit=0").status_code == 400

        assert client.delete(f"/api/jobs/{first}").get_json()["deleted"] is True
        assert client.delete(f"/api/jobs/{first}").status_code == 404

    def test_unknown_route_is_json(self, client):
        response = client.get("/api/nothing")

        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_health(self, client):
        assert client.get("/health").get_json() == {"status": "ok", "scheduler": False}


class TestEvents:
    def test_format_sse(self):
        assert format_sse({"percentage": 50}) == 'event: job-progress\ndata: {"percentage": 50}\n\n'

    def test_stream_starts_with_snapshot(self, client, service):
        job_id = upload_json(client).get_json()["job_id"]

        response = client.get(f"/api/events/{job_id}", buffered=False)

        assert response.status_code == 200
        assert response.mimetype == "text/event-stream"
        first = next(iter(response.response))
        if isinstance(first, bytes):
            first = first.decode("utf-8")
        event, data = first.strip().split("\n", 1)
        assert event == "event: job-progress"
        assert json.loads(data[len("data: "):])["job"]["id"] == job_id
        response.close()

    def test_stream_unknown_job(self, client):
        assert client.get("/api/events/inconnu").status_code == 404
