from __future__ import annotations

import asyncio

from loguru import logger

from stream_chat_bot.access import AllowList
from stream_chat_bot.errors import TransportError
from stream_chat_bot.logging_config import conversation_context
from stream_chat_bot.services.session_controller import SessionController
from stream_chat_bot.transport import InboundEvent, MessagingTransport


def _preview(text: str, limit: int = 80) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


class Bot:
    """Polls the transport and handles every inbound event on its own task.

    Handling events concurrently is what lets ``/stop`` reach a session while
    that same session's reply is still streaming.
    """

    def __init__(
        self,
        *,
        transport: MessagingTransport,
        controller: SessionController,
        allow_list: AllowList,
    ):
        self._transport = transport
        self._controller = controller
        self._allow_list = allow_list
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        async for event in self._transport.updates():
            self.dispatch(event)

    def dispatch(self, event: InboundEvent) -> asyncio.Task:
        task = asyncio.create_task(self._handle(event), name=f"event-{event.user_id}-{event.message_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _handle(self, event: InboundEvent) -> None:
        if not self._allow_list.allows(event.user_id):
            logger.warning(f"Rejected message from user {event.user_id}")
            try:
                await self._transport.create_message(event.chat_id, f"Sorry, you're not on the list (id {event.user_id}).")
            except TransportError as ex:
                logger.warning(f"Reply to chat {event.chat_id} failed: {ex}")
            return

        with conversation_context(event.user_id):
            logger.info(f"Q: {_preview(event.text)}")
            try:
                await self._controller.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unhandled error while handling a message")
