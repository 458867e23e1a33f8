from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from stream_chat_bot.errors import ProviderError
from stream_chat_bot.models import FinishReason, Fragment
from stream_chat_bot.providers.common import default_retry_kwargs

_FINISH_REASON_MAP = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.STOP,
}

_RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
)


class OpenAIProvider:
    def __init__(self, api_key: str, *, temperature: float = 1.0):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._temperature = temperature

    @retry(**default_retry_kwargs(_RETRYABLE_ERRORS))
    async def _create(self, model: str, messages: list[dict], max_tokens: int, *, stream: bool):
        logger.debug(
            f"API request: model={model}, max_tokens={max_tokens}, "
            f"messages={len(messages)}, stream={stream}"
        )
        return await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=self._temperature,
            messages=messages,
            stream=stream,
        )

    async def stream_complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> AsyncIterator[Fragment]:
        """Stream a chat completion from OpenAI as fragments."""
        finish_reason: str | None = None
        text_len = 0

        try:
            stream = await self._create(model, messages, max_tokens, stream=True)
            async with stream:
                async for chunk in stream:
                    choice = chunk.choices[0] if chunk.choices else None
                    if choice is None:
                        continue

                    if choice.finish_reason:
                        finish_reason = choice.finish_reason

                    delta = choice.delta
                    if delta is not None and delta.content:
                        text_len += len(delta.content)
                        yield Fragment(delta.content)
        except openai.OpenAIError as ex:
            raise ProviderError(f"OpenAI request failed: {ex}") from ex

        logger.debug(f"API response: finish_reason={finish_reason}, text_len={text_len}")
        yield Fragment(finish_reason=_FINISH_REASON_MAP.get(finish_reason or "stop", FinishReason.STOP))

    async def complete(
        self,
        model: str,
        messages: list[dict],
        max_tokens: int,
    ) -> str:
        try:
            response = await self._create(model, messages, max_tokens, stream=False)
        except openai.OpenAIError as ex:
            raise ProviderError(f"OpenAI request failed: {ex}") from ex
        text = response.choices[0].message.content or ""
        logger.debug(f"API response: finish_reason={response.choices[0].finish_reason}, len={len(text)}")
        return text
