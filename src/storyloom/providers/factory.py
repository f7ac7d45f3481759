"""Build generation providers from ``provider/model`` strings.

Chat models come from LangChain's ``init_chat_model``. Before that call the
factory fills in what each provider needs: API keys from the environment,
the Ollama host and context window, and, for story growth, the provider's
native JSON output mode so replies arrive as the single JSON object the
classifier expects.
"""

from __future__ import annotations

import copy
import os
from typing import TYPE_CHECKING, Any

from storyloom.observability.logging import get_logger
from storyloom.providers.base import ProviderError
from storyloom.providers.langchain_generator import LangChainGenerator

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from storyloom.observability import LLMLogger

log = get_logger(__name__)

# Provider default models - None means model must be explicitly specified
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "ollama": None,
    "openai": "gpt-5-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_PROVIDER_PACKAGES = {
    "ollama": "langchain-ollama",
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "google": "langchain-google-genai",
}

_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

# Anthropic has no JSON mode; the system prompt alone carries the contract
_JSON_MODE_KWARGS: dict[str, dict[str, Any]] = {
    "ollama": {"format": "json"},
    "openai": {"model_kwargs": {"response_format": {"type": "json_object"}}},
    "google": {"response_mime_type": "application/json"},
}


def get_default_model(provider_name: str) -> str | None:
    """Get default model for a provider, or None if it must be explicit."""
    return PROVIDER_DEFAULTS.get(_normalize_provider(provider_name))


def parse_provider_string(provider_string: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts.

    A bare provider name resolves to that provider's default model.

    Raises:
        ProviderError: If the provider is unknown or has no default model.
    """
    if "/" in provider_string:
        provider_name, model = provider_string.split("/", 1)
    else:
        provider_name, model = provider_string, ""

    provider = _normalize_provider(provider_name.strip())
    if provider not in _KNOWN_PROVIDERS:
        raise ProviderError(provider, f"Unknown provider: {provider}")

    model = model.strip() or (get_default_model(provider) or "")
    if not model:
        raise ProviderError(provider, f"No default model for provider: {provider}")
    return provider, model


def create_chat_model(
    provider_name: str,
    model: str,
    *,
    json_mode: bool = False,
    **kwargs: Any,
) -> BaseChatModel:
    """Create a LangChain BaseChatModel.

    Args:
        provider_name: Provider identifier (ollama, openai, anthropic, google).
        model: Model name/identifier.
        json_mode: Ask the provider to constrain replies to a JSON object.
            Options given explicitly in ``kwargs`` take precedence.
        **kwargs: Additional provider-specific options.

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If provider unavailable or misconfigured.
    """
    provider = _normalize_provider(provider_name)

    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, model, kwargs)
    if json_mode:
        kwargs = {**copy.deepcopy(_JSON_MODE_KWARGS.get(provider, {})), **kwargs}

    # init_chat_model expects 'google_genai' not 'google'
    provider_for_init = "google_genai" if provider == "google" else provider

    try:
        chat_model = _init_chat_model(provider_for_init, model, **kwargs)
    except ImportError as e:
        package = _PROVIDER_PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(
            provider,
            f"{package} not installed. Run: pip install {package}",
        ) from e

    log.info("chat_model_created", provider=provider, model=model, json_mode=json_mode)
    return chat_model


def create_generator(
    provider_string: str,
    *,
    llm_logger: LLMLogger | None = None,
    **kwargs: Any,
) -> LangChainGenerator:
    """Create a GenerationPort from a ``provider/model`` string.

    The chat model is created in JSON mode where the provider supports it.

    Args:
        provider_string: Provider and model, e.g. ``openai/gpt-5-mini``.
        llm_logger: Optional JSONL logger for every call.
        **kwargs: Passed through to the chat model constructor.

    Raises:
        ProviderError: If the provider is unknown or misconfigured.
    """
    provider, model = parse_provider_string(provider_string)
    chat_model = create_chat_model(provider, model, json_mode=True, **kwargs)
    return LangChainGenerator(
        chat_model, provider=provider, model_name=model, llm_logger=llm_logger
    )


def _init_chat_model(provider: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Call init_chat_model; raises ImportError if the provider package is missing."""
    from langchain.chat_models import init_chat_model

    result: BaseChatModel = init_chat_model(model=model, model_provider=provider, **kwargs)
    return result


def _preprocess_provider_kwargs(
    provider: str,
    model: str,
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    """Apply provider-specific pre-processing to kwargs.

    Handles:
    - Ollama: OLLAMA_HOST env var, base_url mapping, num_ctx detection
    - OpenAI / Anthropic / Google: API key from kwargs or environment

    Raises:
        ProviderError: If required configuration is missing.
    """
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider="ollama", missing="OLLAMA_HOST")
            raise ProviderError(
                "ollama",
                "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable.",
            )
        kwargs["base_url"] = host

        if "num_ctx" not in kwargs:
            num_ctx = _query_ollama_num_ctx(host, model)
            kwargs["num_ctx"] = num_ctx if num_ctx else 32_768
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.pop("google_api_key", None) if provider == "google" else None
    api_key = api_key or kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderError(provider, f"API key required. Set {env_var} environment variable.")
    kwargs["api_key"] = api_key
    return kwargs


def _normalize_provider(provider_name: str) -> str:
    name = provider_name.lower()
    if name == "gemini":
        return "google"
    return name


def _query_ollama_num_ctx(host: str, model: str) -> int | None:
    """Query Ollama /api/show to get the model's configured num_ctx.

    Returns:
        The num_ctx value from the model's configuration, or None if the
        query fails or the value is not found.
    """
    import httpx

    try:
        with httpx.Client(timeout=10.0) as client:
            resp = client.post(f"{host}/api/show", json={"model": model})
            resp.raise_for_status()
            data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("ollama_show_failed", model=model, error=str(exc))
        return None

    # 'parameters' holds newline-separated "key  value" pairs
    for line in data.get("parameters", "").splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "num_ctx":
            try:
                num_ctx = int(parts[-1])
            except ValueError:
                continue
            log.info("ollama_num_ctx_from_model", model=model, num_ctx=num_ctx)
            return num_ctx

    for key, value in data.get("model_info", {}).items():
        if key.endswith(".context_length") and isinstance(value, int):
            log.info("ollama_num_ctx_from_arch", model=model, num_ctx=value)
            return value

    return None
