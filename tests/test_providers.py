"""
Tests des adaptateurs de traduction (transport HTTP simulé avec
httpx.MockTransport).
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from doc_translator.errors import (
    AuthenticationError,
    InputError,
    MalformedResponseError,
    ProviderNetworkError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedLanguageError,
)
from doc_translator.llm import LLM
from doc_translator.models import GlossaryTerm, ProviderConfig
from doc_translator.providers import (
    DeepLProvider,
    GoogleProvider,
    LocalProvider,
    OpenAICompatibleProvider,
    get_provider,
)


def mock_client(handler):
    """Client httpx servi par `handler`, et la liste des requêtes reçues."""
    requests = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(record)), requests


def raising(error):
    def handler(request):
        raise error

    return handler


class TestRegistry:
    def test_aliases_share_instance(self):
        assert isinstance(get_provider("chatgpt"), OpenAICompatibleProvider)
        assert get_provider("LibreTranslate") is get_provider("local")

    def test_unknown_provider(self):
        with pytest.raises(InputError) as exc_info:
            get_provider("babelfish")
        assert exc_info.value.code == "unsupported_provider"


class TestLocalProvider:
    def test_translate(self):
        client, requests = mock_client(lambda request: httpx.Response(200, json={"translatedText": "Bonjour"}))
        provider = LocalProvider(client=client)
        config = ProviderConfig(provider="local", base_url="http://libre:5000/")

        assert provider.translate("Hello", "en", "pt-BR", config) == "Bonjour"

        request = requests[0]
        assert str(request.url) == "http://libre:5000/translate"
        assert json.loads(request.content) == {
            "q": "Hello",
            "source": "en",
            "target": "pt",
            "format": "text",
        }

    def test_blank_text_skips_request(self):
        client, requests = mock_client(lambda request: httpx.Response(500))

        assert LocalProvider(client=client).translate("  ", "en", "fr", ProviderConfig("local")) == "  "
        assert requests == []

    def test_glossary_placeholders_restored(self):
        def handler(request):
            text = json.loads(request.content)["q"]
            return httpx.Response(200, json={"translatedText": text.replace("The", "Le")})

        provider = LocalProvider(client=mock_client(handler)[0])
        config = ProviderConfig("local", glossary=(GlossaryTerm("Spirit", "Esprit"),))

        assert provider.translate("The Spirit", "en", "fr", config) == "Le Esprit"

    @pytest.mark.parametrize(
        "handler, expected",
        [
            (lambda request: httpx.Response(200, json={"unexpected": True}), MalformedResponseError),
            (lambda request: httpx.Response(200, text="<html>"), MalformedResponseError),
            (lambda request: httpx.Response(503, json={"error": "overloaded"}), ProviderNetworkError),
            (
                lambda request: httpx.Response(400, json={"error": "fr-xx is not a supported language"}),
                UnsupportedLanguageError,
            ),
            (raising(httpx.ConnectError("connexion refusée")), ProviderNetworkError),
            (raising(httpx.ReadTimeout("trop lent")), ProviderTimeoutError),
        ],
    )
    def test_errors(self, handler, expected):
        provider = LocalProvider(client=mock_client(handler)[0])

        with pytest.raises(expected) as exc_info:
            provider.translate("Hello", "en", "fr", ProviderConfig("local"))
        assert exc_info.value.provider == "local"


class TestGoogleProvider:
    def test_joins_segments(self):
        body = [[["Bonjour ", "Hello ", None], ["le monde", "world", None]], None, "en"]
        client, requests = mock_client(lambda request: httpx.Response(200, json=body))

        result = GoogleProvider(client=client).translate("Hello world", "auto", "fr", ProviderConfig("google"))

        assert result == "Bonjour le monde"
        request = requests[0]
        assert request.url.params["tl"] == "fr"
        assert request.url.params["sl"] == "auto"

    def test_rate_limit_is_retryable(self):
        client, _ = mock_client(lambda request: httpx.Response(429, text="Too Many Requests"))

        with pytest.raises(RateLimitError) as exc_info:
            GoogleProvider(client=client).translate("Hello", "en", "fr", ProviderConfig("google"))
        assert exc_info.value.retryable

    def test_unexpected_body(self):
        client, _ = mock_client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(MalformedResponseError):
            GoogleProvider(client=client).translate("Hello", "en", "fr", ProviderConfig("google"))


class TestDeepLProvider:
    def test_requires_api_key(self):
        with pytest.raises(InputError) as exc_info:
            DeepLProvider().validate_config(ProviderConfig("deepl"))
        assert exc_info.value.code == "missing_credentials"

    def test_payload_and_free_endpoint(self):
        client, requests = mock_client(
            lambda request: httpx.Response(200, json={"translations": [{"text": "<p>Hello</p>"}]})
        )
        config = ProviderConfig("deepl", api_key="secret:fx", formality="formal", html_mode=True)

        result = DeepLProvider(client=client).translate("<p>Hallo</p>", "de-DE", "en", config)

        assert result == "<p>Hello</p>"
        request = requests[0]
        assert request.url.host == "api-free.deepl.com"
        assert request.headers["Authorization"] == "DeepL-Auth-Key secret:fx"
        assert json.loads(request.content) == {
            "text": ["<p>Hallo</p>"],
            "target_lang": "EN-US",
            "source_lang": "DE",
            "formality": "prefer_more",
            "tag_handling": "html",
        }

    def test_pro_endpoint_and_auto_source(self):
        client, requests = mock_client(lambda request: httpx.Response(200, json={"translations": [{"text": "Salut"}]}))

        DeepLProvider(client=client).translate("Hi", "auto", "fr", ProviderConfig("deepl", api_key="secret"))

        request = requests[0]
        assert request.url.host == "api.deepl.com"
        assert "source_lang" not in json.loads(request.content)

    def test_quota_exceeded(self):
        client, _ = mock_client(lambda request: httpx.Response(456, json={"message": "Quota exceeded"}))

        with pytest.raises(RateLimitError) as exc_info:
            DeepLProvider(client=client).translate("Hi", "en", "fr", ProviderConfig("deepl", api_key="k"))
        assert exc_info.value.code == "quota_exceeded"

    def test_forbidden_is_auth_error(self):
        client, _ = mock_client(lambda request: httpx.Response(403, json={"message": "Wrong key"}))

        with pytest.raises(AuthenticationError) as exc_info:
            DeepLProvider(client=client).translate("Hi", "en", "fr", ProviderConfig("deepl", api_key="k"))
        assert not exc_info.value.retryable


class TestOpenAICompatibleProvider:
    def test_glossary_injected_in_prompt(self):
        llm = MagicMock(spec=LLM)
        llm.render_prompt.return_value = "system"
        llm.query.return_value = "L'Esprit"
        factory = MagicMock(return_value=llm)
        provider = OpenAICompatibleProvider(llm_factory=factory)
        config = ProviderConfig(
            "openai",
            api_key="sk-test",
            model="deepseek-chat",
            glossary=(GlossaryTerm("Spirit", "Esprit"),),
            options={"temperature": 0.2, "log_context": "job_ab12_chunk_000"},
        )

        assert provider.translate("The Spirit", "en", "fr", config) == "L'Esprit"
        provider.translate("The Spirit", "en", "fr", config)

        factory.assert_called_once_with(config)
        assert llm.render_prompt.call_args.kwargs["glossary"] == "- Spirit → Esprit"
        llm.query.assert_called_with(
            "system",
            "The Spirit",
            context="job_ab12_chunk_000",
            model="deepseek-chat",
            options={"temperature": 0.2},
        )
