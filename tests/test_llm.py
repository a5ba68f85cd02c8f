"""
Tests du client LLM : logs par requête, options de génération et
conversion des erreurs du SDK openai.
"""

from unittest.mock import MagicMock

import httpx
import openai
import pytest

from doc_translator.errors import (
    AuthenticationError,
    MalformedResponseError,
    ProviderNetworkError,
    ProviderRequestError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedLanguageError,
)
from doc_translator.llm import LLM, map_openai_error
from doc_translator.logger import LogSession

REQUEST = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")


def status_error(cls, status: int, message: str = "erreur"):
    return cls(message, response=httpx.Response(status, request=REQUEST), body=None)


def completion(content):
    choice = MagicMock()
    choice.message.content = content
    response = MagicMock()
    response.choices = [choice]
    return response


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def llm(client):
    return LLM(model_name="llama3.1:8b", url=None, client=client, retry_delay=0, provider="ollama")


class TestQuery:
    def test_returns_stripped_response_and_logs(self, llm, client):
        client.chat.completions.create.return_value = completion("  Bonjour  ")

        result = llm.query("system", "Hello", context="job_ab12_chunk_003_validation")

        assert result == "Bonjour"
        logs = list(LogSession.get_session_dir().glob("llm_job_ab12_chunk_003_validation_0001_*.log"))
        assert len(logs) == 1
        content = logs[0].read_text(encoding="utf-8")
        assert "--- PROMPT ---\nsystem" in content
        assert "--- RESPONSE ---\nBonjour" in content

    def test_generation_options(self, llm, client):
        client.chat.completions.create.return_value = completion("ok")

        llm.query(
            "system",
            "Hello",
            model="qwen2.5:7b",
            options={"temperature": 0.1, "top_p": 0.8, "num_ctx": 4096},
        )

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "qwen2.5:7b"
        assert kwargs["temperature"] == 0.1
        assert kwargs["top_p"] == 0.8
        assert kwargs["extra_body"] == {"options": {"num_ctx": 4096}}

    def test_defaults_without_options(self, llm, client):
        client.chat.completions.create.return_value = completion("ok")

        llm.query("system", "Hello")

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "llama3.1:8b"
        assert kwargs["temperature"] == 0.3
        assert "extra_body" not in kwargs

    def test_empty_response(self, llm, client):
        response = MagicMock()
        response.choices = []
        client.chat.completions.create.return_value = response

        with pytest.raises(MalformedResponseError):
            llm.query("system", "Hello")


class TestRetries:
    def test_timeout_then_success(self, llm, client):
        client.chat.completions.create.side_effect = [
            openai.APITimeoutError(request=REQUEST),
            completion("Bonjour"),
        ]

        assert llm.query("system", "Hello") == "Bonjour"
        assert client.chat.completions.create.call_count == 2

    def test_timeouts_exhausted(self, llm, client):
        client.chat.completions.create.side_effect = openai.APITimeoutError(request=REQUEST)

        with pytest.raises(ProviderTimeoutError):
            llm.query("system", "Hello")
        assert client.chat.completions.create.call_count == 3

    def test_auth_error_is_not_retried(self, llm, client):
        client.chat.completions.create.side_effect = status_error(openai.AuthenticationError, 401)

        with pytest.raises(AuthenticationError) as exc_info:
            llm.query("system", "Hello")
        assert exc_info.value.provider == "ollama"
        assert client.chat.completions.create.call_count == 1


class TestErrorMapping:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (status_error(openai.AuthenticationError, 401), AuthenticationError),
            (status_error(openai.PermissionDeniedError, 403), AuthenticationError),
            (status_error(openai.RateLimitError, 429), RateLimitError),
            (openai.APITimeoutError(request=REQUEST), ProviderTimeoutError),
            (openai.APIConnectionError(request=REQUEST), ProviderNetworkError),
            (status_error(openai.BadRequestError, 400, "unsupported language xx"), UnsupportedLanguageError),
            (status_error(openai.BadRequestError, 400), ProviderRequestError),
            (status_error(openai.InternalServerError, 500), ProviderNetworkError),
        ],
    )
    def test_mapping(self, error, expected):
        mapped = map_openai_error(error, "openai")

        assert type(mapped) is expected
        assert mapped.provider == "openai"


def test_render_packaged_templates(llm):
    prompt = llm.render_prompt(
        "translate.jinja",
        source_language="en",
        target_language="fr",
        html_mode=True,
        formality="formal",
        glossary="- Spirit → Esprit",
    )

    assert "from en to fr" in prompt
    assert "HTML tags" in prompt
    assert "formal register" in prompt
    assert "- Spirit → Esprit" in prompt
