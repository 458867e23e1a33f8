from __future__ import annotations

import asyncio

from stream_chat_bot.models import Fragment

_CLOSED = object()


class FragmentStream:
    """Single-producer, single-consumer queue of fragments with idempotent close.

    ``push`` after ``close`` is refused instead of raising, so a producer that
    races with cancellation never hits a send-on-closed error. Closing with
    ``discard=True`` drops everything the consumer has not taken yet.
    ``consumed_text`` is the text of every fragment actually handed out.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._consumed: list[str] = []
        self._closed = False
        self._discard = False
        self._exhausted = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def consumed_text(self) -> str:
        return "".join(self._consumed)

    def push(self, fragment: Fragment) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(fragment)
        return True

    def close(self, *, discard: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        self._discard = discard
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> Fragment:
        if self._exhausted or self._discard:
            self._exhausted = True
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._discard:
            self._exhausted = True
            raise StopAsyncIteration
        self._consumed.append(item.text)  # type: ignore[attr-defined]
        return item  # type: ignore[return-value]
