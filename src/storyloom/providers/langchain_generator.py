"""LangChain adapter for the GenerationPort protocol."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, NoReturn

import httpx
from langchain_core.messages import HumanMessage, SystemMessage

from storyloom.observability.logging import current_story_id, get_logger
from storyloom.providers.base import (
    ProviderConnectionError,
    ProviderError,
    ProviderModelError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from storyloom.providers.content import extract_text, strip_code_fence

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from storyloom.observability import LLMLogger

log = get_logger(__name__)


class LangChainGenerator:
    """Adapts a LangChain chat model to the GenerationPort protocol.

    Every call sends ``[SystemMessage, HumanMessage]`` and returns the text of
    the reply with any wrapping markdown code fence removed. When an
    LLMLogger is attached, successful and failed calls are both recorded.

    Attributes:
        provider: Provider name used in error messages (e.g. ``openai``).
        model_name: Model identifier used in log entries.
    """

    def __init__(
        self,
        model: BaseChatModel,
        provider: str,
        model_name: str,
        llm_logger: LLMLogger | None = None,
    ) -> None:
        """Initialize with a configured chat model.

        Args:
            model: LangChain chat model instance.
            provider: Provider name for error messages.
            model_name: Model name for identification.
            llm_logger: Optional JSONL call logger.
        """
        self._model = model
        self.provider = provider
        self.model_name = model_name
        self._llm_logger = llm_logger

    async def generate(
        self,
        system_instruction: str,
        user_content: str,
        *,
        timeout_ms: int | None = None,
    ) -> str:
        """Send one prompt to the chat model and return the raw reply text.

        Raises:
            ProviderTimeoutError: If ``timeout_ms`` elapses first.
            ProviderError: For any other failure, mapped to the most specific
                subclass available.
        """
        messages = [SystemMessage(content=system_instruction), HumanMessage(content=user_content)]
        start_time = time.perf_counter()

        try:
            call = self._model.ainvoke(messages)
            if timeout_ms is not None:
                response: Any = await asyncio.wait_for(call, timeout=timeout_ms / 1000)
            else:
                response = await call
        except Exception as e:
            duration = time.perf_counter() - start_time
            self._log_call(system_instruction, user_content, "", duration, timeout_ms, error=str(e))
            self._raise_provider_error(e, timeout_ms)

        duration = time.perf_counter() - start_time
        text = strip_code_fence(extract_text(response.content))

        tokens_used = 0
        usage = getattr(response, "usage_metadata", None)
        if usage:
            tokens_used = usage.get("total_tokens", 0)

        self._log_call(system_instruction, user_content, text, duration, timeout_ms, tokens_used)
        log.debug(
            "generation_call_completed",
            provider=self.provider,
            model=self.model_name,
            duration_seconds=round(duration, 3),
            tokens=tokens_used,
        )
        return text

    def _log_call(
        self,
        system_instruction: str,
        user_content: str,
        content: str,
        duration: float,
        timeout_ms: int | None,
        tokens_used: int = 0,
        error: str | None = None,
    ) -> None:
        if self._llm_logger is None:
            return
        metadata = {"provider": self.provider}
        story_id = current_story_id()
        if story_id is not None:
            metadata["story_id"] = story_id
        entry = self._llm_logger.create_entry(
            model=self.model_name,
            system_instruction=system_instruction,
            user_content=user_content,
            content=content,
            duration_seconds=duration,
            timeout_ms=timeout_ms,
            tokens_used=tokens_used,
            error=error,
            **metadata,
        )
        self._llm_logger.log(entry)

    def _raise_provider_error(self, error: Exception, timeout_ms: int | None) -> NoReturn:
        """Convert transport and SDK exceptions to ProviderError subclasses.

        SDK exceptions are matched on their ``status_code`` attribute so that
        no provider SDK has to be importable here.
        """
        if isinstance(error, ProviderError):
            raise error
        if isinstance(error, TimeoutError) and timeout_ms is not None:
            log.warning("generation_call_timeout", provider=self.provider, timeout_ms=timeout_ms)
            raise ProviderTimeoutError(self.provider, timeout_ms) from error
        if isinstance(error, httpx.TimeoutException):
            raise ProviderConnectionError(self.provider, f"Request timed out: {error}") from error
        if isinstance(error, (httpx.ConnectError, ConnectionError)):
            raise ProviderConnectionError(self.provider, f"Connection error: {error}") from error

        status = getattr(error, "status_code", None)
        if status == 429:
            raise ProviderRateLimitError(
                self.provider, "Rate limit exceeded. Please wait before retrying."
            ) from error
        if status == 404:
            raise ProviderModelError(
                self.provider, f"Model {self.model_name} is not available: {error}"
            ) from error
        if status is not None:
            raise ProviderError(self.provider, f"API error (HTTP {status}): {error}") from error

        raise ProviderError(self.provider, f"Generation failed: {error}") from error
