from __future__ import annotations

from loguru import logger

from stream_chat_bot.chunker import CreateMessage, Operation, OutputChunker
from stream_chat_bot.errors import TransportError
from stream_chat_bot.generator import Generation, GenerationResult
from stream_chat_bot.transport import MessagingTransport


class MessageWriter:
    """Apply chunker operations for one generation to a single chat, in order.

    Delivery failures are logged and skipped; the generation keeps running
    because the provider has already spent the tokens.
    """

    def __init__(self, transport: MessagingTransport, chat_id: int):
        self._transport = transport
        self._chat_id = chat_id
        self._message_id: int | None = None
        self.failures = 0

    @property
    def message_id(self) -> int | None:
        return self._message_id

    async def apply(self, ops: list[Operation]) -> None:
        for op in ops:
            try:
                if isinstance(op, CreateMessage) or self._message_id is None:
                    # Later edits must never land on the previous message.
                    self._message_id = None
                    self._message_id = await self._transport.create_message(self._chat_id, op.text)
                else:
                    await self._transport.edit_message(self._chat_id, self._message_id, op.text)
            except TransportError as ex:
                self.failures += 1
                logger.warning(f"Delivery to chat {self._chat_id} failed ({type(op).__name__}): {ex}")


async def deliver(generation: Generation, chunker: OutputChunker, writer: MessageWriter) -> GenerationResult:
    """Stream a generation's fragments into chat messages and wait for its result."""
    async for fragment in generation.fragments():
        await writer.apply(chunker.feed(fragment))
    result = await generation.wait()
    await writer.apply(chunker.finish())
    if writer.failures:
        logger.warning(f"Generation {generation.id}: {writer.failures} delivery operation(s) failed")
    return result
