"""Generation providers using LangChain."""

from storyloom.providers.base import (
    GenerationPort,
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from storyloom.providers.factory import (
    create_chat_model,
    create_generator,
    get_default_model,
    parse_provider_string,
)
from storyloom.providers.langchain_generator import LangChainGenerator
from storyloom.providers.replay import ReplayGenerator

__all__ = [
    "GenerationPort",
    "LangChainGenerator",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderModelError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ReplayGenerator",
    "create_chat_model",
    "create_generator",
    "get_default_model",
    "parse_provider_string",
]
