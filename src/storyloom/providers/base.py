"""Generation port protocol and provider errors."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class GenerationPort(Protocol):
    """Protocol for the text-generation service used to grow story trees.

    Implementations send one system instruction and one user message and
    return the raw response text. They own timeouts and transport; failures
    are raised as ``ProviderError`` subclasses and never retried by callers
    in this package.
    """

    async def generate(
        self,
        system_instruction: str,
        user_content: str,
        *,
        timeout_ms: int | None = None,
    ) -> str:
        """Generate a raw response for one prompt.

        Args:
            system_instruction: System prompt describing the response contract.
            user_content: Per-call narrative context.
            timeout_ms: Optional deadline for the call in milliseconds.

        Returns:
            Raw response text, unparsed.

        Raises:
            ProviderError: If the call fails or times out.
        """
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when rate limit is exceeded."""

    pass


class ProviderModelError(ProviderError):
    """Raised when the requested model is unavailable."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a generation call exceeds its deadline."""

    def __init__(self, provider: str, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(provider, f"Generation timed out after {timeout_ms} ms")
