from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from stream_chat_bot.errors import ProviderError
from stream_chat_bot.models import FinishReason, Fragment
from stream_chat_bot.providers.common import default_retry_kwargs, split_system_prompt

_STOP_REASON_MAP = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
}

_RETRYABLE_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.APITimeoutError,
)


class AnthropicProvider:
    def __init__(self, api_key: str, *, temperature: float = 1.0):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._temperature = temperature

    @retry(**default_retry_kwargs(_RETRYABLE_ERRORS))
    async def _create(self, model: str, messages: list[dict], max_tokens: int, *, stream: bool):
        system_prompt, turns = split_system_prompt(messages)
        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, "
            f"messages={len(turns)}, stream={stream}"
        )
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=self._temperature,
            messages=turns,
            stream=stream,
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        return await self._client.messages.create(**kwargs)

    async def stream_complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> AsyncIterator[Fragment]:
        """Stream a message from Anthropic as fragments."""
        stop_reason: str | None = None
        text_len = 0

        try:
            stream = await self._create(model, messages, max_tokens, stream=True)
            async with stream:
                async for event in stream:
                    if event.type == "content_block_delta" and event.delta.type == "text_delta":
                        text_len += len(event.delta.text)
                        yield Fragment(event.delta.text)
                    elif event.type == "message_delta" and event.delta.stop_reason:
                        stop_reason = event.delta.stop_reason
        except anthropic.AnthropicError as ex:
            raise ProviderError(f"Anthropic request failed: {ex}") from ex

        logger.debug(f"API response: stop_reason={stop_reason}, text_len={text_len}")
        yield Fragment(finish_reason=_STOP_REASON_MAP.get(stop_reason or "end_turn", FinishReason.STOP))

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        try:
            response = await self._create(model, messages, max_tokens, stream=False)
        except anthropic.AnthropicError as ex:
            raise ProviderError(f"Anthropic request failed: {ex}") from ex
        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(block.text for block in response.content if block.type == "text")
