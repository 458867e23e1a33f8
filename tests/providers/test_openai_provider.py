import asyncio
import unittest
from types import SimpleNamespace

import httpx
import openai

from stream_chat_bot.errors import ProviderError
from stream_chat_bot.models import FinishReason
from stream_chat_bot.providers.openai_provider import OpenAIProvider


class _FakeAsyncStream:
    def __init__(self, chunks: list[object]):
        self._chunks = chunks
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    def __aiter__(self):
        self._iter = iter(self._chunks)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class _FakeCompletions:
    def __init__(self, result: object = None, error: Exception | None = None):
        self._result = result
        self._error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._result


def _chunk(content: str | None, finish_reason: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content), finish_reason=finish_reason)]
    )


def _make_provider(completions: _FakeCompletions) -> OpenAIProvider:
    provider = OpenAIProvider.__new__(OpenAIProvider)
    provider._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    provider._temperature = 0.3
    return provider


def _bad_request() -> openai.BadRequestError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.BadRequestError("context_length_exceeded", response=httpx.Response(400, request=request), body=None)


async def _collect(provider: OpenAIProvider, messages: list[dict]) -> list:
    return [f async for f in provider.stream_complete("gpt-4", messages, 256)]


class OpenAIProviderStreamTests(unittest.TestCase):
    def test_stream_yields_text_then_terminal_fragment(self) -> None:
        stream = _FakeAsyncStream([
            _chunk("Hel"),
            SimpleNamespace(choices=[]),
            _chunk(None),
            _chunk("lo"),
            _chunk(None, finish_reason="length"),
        ])
        completions = _FakeCompletions(result=stream)
        provider = _make_provider(completions)
        messages = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]

        fragments = asyncio.run(_collect(provider, messages))

        self.assertEqual(["Hel", "lo", ""], [f.text for f in fragments])
        self.assertIs(FinishReason.LENGTH, fragments[-1].finish_reason)
        self.assertTrue(stream.closed)
        call = completions.calls[0]
        self.assertEqual("gpt-4", call["model"])
        self.assertEqual(256, call["max_tokens"])
        self.assertEqual(0.3, call["temperature"])
        self.assertTrue(call["stream"])
        self.assertEqual(messages, call["messages"])

    def test_missing_finish_reason_defaults_to_stop(self) -> None:
        provider = _make_provider(_FakeCompletions(result=_FakeAsyncStream([_chunk("x")])))
        fragments = asyncio.run(_collect(provider, []))
        self.assertIs(FinishReason.STOP, fragments[-1].finish_reason)

    def test_api_error_becomes_provider_error(self) -> None:
        provider = _make_provider(_FakeCompletions(error=_bad_request()))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(_collect(provider, []))

        self.assertIsInstance(ctx.exception.__cause__, openai.BadRequestError)


class OpenAIProviderCompleteTests(unittest.TestCase):
    def test_complete_returns_message_content(self) -> None:
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Paris"), finish_reason="stop")]
        )
        completions = _FakeCompletions(result=response)
        provider = _make_provider(completions)

        text = asyncio.run(provider.complete("gpt-4", [{"role": "user", "content": "Capital?"}], 32))

        self.assertEqual("Paris", text)
        self.assertFalse(completions.calls[0]["stream"])

    def test_complete_wraps_errors(self) -> None:
        provider = _make_provider(_FakeCompletions(error=_bad_request()))
        with self.assertRaises(ProviderError):
            asyncio.run(provider.complete("gpt-4", [], 32))


if __name__ == "__main__":
    unittest.main()
