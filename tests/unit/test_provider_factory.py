"""Tests for provider factory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from storyloom.providers.base import ProviderError
from storyloom.providers.factory import (
    PROVIDER_DEFAULTS,
    _normalize_provider,
    _query_ollama_num_ctx,
    create_chat_model,
    create_generator,
    get_default_model,
    parse_provider_string,
)
from storyloom.providers.langchain_generator import LangChainGenerator


@pytest.fixture(autouse=True)
def clear_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "OLLAMA_HOST"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_default_models(self) -> None:
        assert get_default_model("openai") == "gpt-5-mini"
        assert get_default_model("OpenAI") == "gpt-5-mini"
        assert get_default_model("anthropic") == "claude-sonnet-4-20250514"
        assert get_default_model("gemini") == "gemini-2.5-flash"

    def test_ollama_requires_explicit_model(self) -> None:
        assert get_default_model("ollama") is None

    def test_unknown_provider(self) -> None:
        assert get_default_model("unknown") is None

    def test_known_providers(self) -> None:
        assert set(PROVIDER_DEFAULTS) == {"ollama", "openai", "anthropic", "google"}

    def test_normalize_provider(self) -> None:
        assert _normalize_provider("Gemini") == "google"
        assert _normalize_provider("OLLAMA") == "ollama"


class TestParseProviderString:
    def test_provider_and_model(self) -> None:
        assert parse_provider_string("ollama/qwen3:8b") == ("ollama", "qwen3:8b")

    def test_model_with_slash(self) -> None:
        assert parse_provider_string("openai/org/model") == ("openai", "org/model")

    def test_bare_provider_uses_default(self) -> None:
        assert parse_provider_string("anthropic") == ("anthropic", "claude-sonnet-4-20250514")

    def test_unknown_provider(self) -> None:
        with pytest.raises(ProviderError, match="Unknown provider: mystery"):
            parse_provider_string("mystery/model")

    def test_no_default_model(self) -> None:
        with pytest.raises(ProviderError, match="No default model"):
            parse_provider_string("ollama")


class TestCreateChatModel:
    def test_unknown_provider(self) -> None:
        with pytest.raises(ProviderError, match="Unknown provider"):
            create_chat_model("mystery", "model")

    def test_missing_api_key(self) -> None:
        with pytest.raises(ProviderError, match="OPENAI_API_KEY"):
            create_chat_model("openai", "gpt-5-mini")

    def test_ollama_requires_host(self) -> None:
        with pytest.raises(ProviderError, match="OLLAMA_HOST"):
            create_chat_model("ollama", "qwen3:8b")

    def test_api_key_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("storyloom.providers.factory._init_chat_model") as init:
            create_chat_model("openai", "gpt-5-mini", temperature=0.7)

        init.assert_called_once_with("openai", "gpt-5-mini", temperature=0.7, api_key="sk-test")

    def test_google_maps_to_genai(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_API_KEY", "g-test")
        with patch("storyloom.providers.factory._init_chat_model") as init:
            create_chat_model("gemini", "gemini-2.5-flash")

        assert init.call_args.args[0] == "google_genai"
        assert init.call_args.kwargs["api_key"] == "g-test"

    def test_ollama_host_and_num_ctx(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OLLAMA_HOST", "http://ollama:11434")
        with (
            patch("storyloom.providers.factory._query_ollama_num_ctx", return_value=None),
            patch("storyloom.providers.factory._init_chat_model") as init,
        ):
            create_chat_model("ollama", "qwen3:8b")

        init.assert_called_once_with(
            "ollama", "qwen3:8b", base_url="http://ollama:11434", num_ctx=32_768
        )

    def test_missing_package(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a-test")
        with (
            patch(
                "storyloom.providers.factory._init_chat_model",
                side_effect=ImportError("no module"),
            ),
            pytest.raises(ProviderError, match="pip install langchain-anthropic"),
        ):
            create_chat_model("anthropic", "claude-sonnet-4-20250514")


class TestJsonMode:
    @pytest.mark.parametrize(
        ("provider", "env", "expected"),
        [
            (
                "openai",
                "OPENAI_API_KEY",
                {"model_kwargs": {"response_format": {"type": "json_object"}}},
            ),
            ("google", "GOOGLE_API_KEY", {"response_mime_type": "application/json"}),
        ],
    )
    def test_provider_json_options(
        self,
        monkeypatch: pytest.MonkeyPatch,
        provider: str,
        env: str,
        expected: dict[str, object],
    ) -> None:
        monkeypatch.setenv(env, "key")
        with patch("storyloom.providers.factory._init_chat_model") as init:
            create_chat_model(provider, "some-model", json_mode=True)

        for key, value in expected.items():
            assert init.call_args.kwargs[key] == value

    def test_ollama_json_format(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OLLAMA_HOST", "http://ollama:11434")
        with (
            patch("storyloom.providers.factory._query_ollama_num_ctx", return_value=8192),
            patch("storyloom.providers.factory._init_chat_model") as init,
        ):
            create_chat_model("ollama", "qwen3:8b", json_mode=True)

        assert init.call_args.kwargs["format"] == "json"
        assert init.call_args.kwargs["num_ctx"] == 8192

    def test_anthropic_has_no_json_option(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "a-test")
        with patch("storyloom.providers.factory._init_chat_model") as init:
            create_chat_model("anthropic", "claude-sonnet-4-20250514", json_mode=True)

        init.assert_called_once_with("anthropic", "claude-sonnet-4-20250514", api_key="a-test")

    def test_explicit_option_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OLLAMA_HOST", "http://ollama:11434")
        with (
            patch("storyloom.providers.factory._query_ollama_num_ctx", return_value=None),
            patch("storyloom.providers.factory._init_chat_model") as init,
        ):
            create_chat_model("ollama", "qwen3:8b", json_mode=True, format="")

        assert init.call_args.kwargs["format"] == ""


class TestCreateGenerator:
    def test_wraps_chat_model(self) -> None:
        chat_model = MagicMock()
        with patch(
            "storyloom.providers.factory.create_chat_model", return_value=chat_model
        ) as create:
            generator = create_generator("openai/gpt-4o", temperature=0.2)

        create.assert_called_once_with("openai", "gpt-4o", json_mode=True, temperature=0.2)
        assert isinstance(generator, LangChainGenerator)
        assert generator.provider == "openai"
        assert generator.model_name == "gpt-4o"


class TestOllamaNumCtx:
    def _client(self, response: MagicMock | Exception) -> MagicMock:
        client = MagicMock()
        client.__enter__.return_value = client
        if isinstance(response, Exception):
            client.post.side_effect = response
        else:
            client.post.return_value = response
        return client

    def test_from_parameters(self) -> None:
        response = MagicMock()
        response.json.return_value = {"parameters": "temperature 0.7\nnum_ctx    8192"}
        with patch("httpx.Client", return_value=self._client(response)):
            assert _query_ollama_num_ctx("http://ollama", "qwen3:8b") == 8192

    def test_from_model_info(self) -> None:
        response = MagicMock()
        response.json.return_value = {"model_info": {"qwen3.context_length": 40960}}
        with patch("httpx.Client", return_value=self._client(response)):
            assert _query_ollama_num_ctx("http://ollama", "qwen3:8b") == 40960

    def test_connection_failure(self) -> None:
        client = self._client(httpx.ConnectError("refused"))
        with patch("httpx.Client", return_value=client):
            assert _query_ollama_num_ctx("http://ollama", "qwen3:8b") is None
