from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger

from stream_chat_bot.errors import TransportError
from stream_chat_bot.transport import InboundEvent, parse_inbound_text

_API_BASE = "https://api.telegram.org"
_RETRY_DELAY_SECONDS = 5.0

# Telegram rejects an edit that does not change the text; nothing to do then.
_NOT_MODIFIED = "message is not modified"

TELEGRAM_MAX_MESSAGE_LENGTH = 4096


def _to_event(update: dict) -> InboundEvent | None:
    message = update.get("message")
    if not message or "text" not in message or "from" not in message:
        return None
    is_command, command, args = parse_inbound_text(message["text"])
    return InboundEvent(
        user_id=str(message["from"]["id"]),
        chat_id=int(message["chat"]["id"]),
        text=message["text"],
        is_command=is_command,
        command=command,
        args=args,
        message_id=message.get("message_id"),
    )


class TelegramTransport:
    """Telegram Bot API client: long-polls updates, sends and edits messages."""

    def __init__(
        self,
        token: str,
        *,
        poll_timeout: int = 30,
        client: httpx.AsyncClient | None = None,
        retry_delay: float = _RETRY_DELAY_SECONDS,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=f"{_API_BASE}/bot{token}",
            timeout=poll_timeout + 10,
        )
        self._poll_timeout = poll_timeout
        self._retry_delay = retry_delay
        self._offset: int | None = None
        self._closed = False

    async def create_message(self, chat_id: int, text: str) -> int:
        result = await self._call("sendMessage", {"chat_id": chat_id, "text": text})
        return int(result["message_id"])

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> None:
        try:
            await self._call(
                "editMessageText",
                {"chat_id": chat_id, "message_id": message_id, "text": text},
            )
        except TransportError as ex:
            if _NOT_MODIFIED in str(ex):
                return
            raise

    async def get_me(self) -> dict:
        return await self._call("getMe", {})

    async def updates(self) -> AsyncIterator[InboundEvent]:
        while not self._closed:
            payload: dict[str, Any] = {"timeout": self._poll_timeout, "allowed_updates": ["message"]}
            if self._offset is not None:
                payload["offset"] = self._offset
            try:
                result = await self._call("getUpdates", payload)
            except TransportError as ex:
                if self._closed:
                    return
                logger.warning(f"Polling failed: {ex}. Retrying in {self._retry_delay:.0f}s")
                await asyncio.sleep(self._retry_delay)
                continue

            for update in result:
                self._offset = int(update["update_id"]) + 1
                event = _to_event(update)
                if event is None:
                    logger.debug(f"Ignoring update {update['update_id']} without text")
                    continue
                yield event

    async def close(self) -> None:
        self._closed = True
        await self._client.aclose()

    async def _call(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(f"/{method}", json=payload)
        except httpx.HTTPError as ex:
            raise TransportError(f"Telegram {method} failed: {type(ex).__name__}: {ex}") from ex

        try:
            body = response.json()
        except ValueError:
            raise TransportError(f"Telegram {method} failed: HTTP {response.status_code}") from None

        if not body.get("ok"):
            description = body.get("description", f"HTTP {response.status_code}")
            raise TransportError(f"Telegram {method} failed: {description}")
        return body["result"]
