from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from stream_chat_bot.models import Fragment


@runtime_checkable
class LLMProvider(Protocol):
    def stream_complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> AsyncIterator[Fragment]:
        """Stream a completion as text fragments.

        ``messages`` are ``{"role", "content"}`` dicts, the first one being the
        system prompt. The last fragment carries a ``finish_reason``. Failures
        are raised as ``ProviderError``.
        """
        ...

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        """Non-streaming completion."""
        ...


def create_provider(provider_name: str, api_key: str, *, temperature: float = 1.0) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "openai":
        from stream_chat_bot.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, temperature=temperature)
    if name == "anthropic":
        from stream_chat_bot.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, temperature=temperature)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openai', 'anthropic'")
